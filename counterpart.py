import collections
import os
import platform

SETTINGS_FILE = 'Counterpart.sublime-settings'

SETTING_SWITCH_TO_VISIBLE = 'switch_to_visible_if_possible'
SETTING_EXTENSION_PREFERENCES = 'extension_preferences'
SETTING_DEBUG = 'debug'

DEFAULT_EXTENSION_PREFERENCES = {
    'c': {'h': 2, 'hpp': 1},
    'h': {'c': 2, 'cpp': 1},
    'cpp': {'hpp': 2, 'h': 1},
    'hpp': {'cpp': 2, 'c': 1},
}

EXTENSION_WEIGHT = 10

RESOLVED_SWITCHED_EXACT = 'SwitchedExact'
RESOLVED_SWITCHED_DIR_NAME = 'SwitchedDirName'
RESOLVED_SWITCHED_BUFFER = 'SwitchedBuffer'
RESOLVED_OPENED = 'Opened'

if platform.system() == 'Windows':
    def is_path_sep(c):
        # type: (str) -> bool
        return c in '\\/'

    def get_home():
        # type: () -> AbsolutePath
        return AbsolutePath(os.environ['HOMEDRIVE'] + os.environ['HOMEPATH'])

    def expanduser(path):
        # type: (str) -> str
        # On Windows `os.path.expanduser` returns the path that would be the
        # user's home directory even if it does not exist.  Only resolve
        # tilde directories that exist, as on Linux.
        if not path or path[0] != '~':
            return path
        idx = 1
        while idx < len(path) and not is_path_sep(path[idx]):
            idx += 1
        d = os.path.expanduser(path[:idx])
        if os.path.isdir(d):
            return os.path.expanduser(path)
        else:
            return path
else:
    assert os.sep == '/'

    def is_path_sep(c):
        # type: (str) -> bool
        return c == '/'

    def get_home():
        # type: () -> AbsolutePath
        return AbsolutePath(os.path.expanduser('~'))

    def expanduser(path):
        # type: (str) -> str
        return os.path.expanduser(path)


# Any section of a path, to allow path-like comparison.
class PartialPath(object):

    def __init__(self, path):
        # type: (str) -> None
        self.path = path
        self.norm = self.normalize(path)
        self.canonical = os.path.normcase(self.norm)

    def normalize(self, path):
        # type: (str) -> str
        if path:
            return os.path.normpath(path)
        return path

    def __str__(self):
        # type: () -> str
        return self.path

    def __repr__(self):
        # type: () -> str
        return '{}({!r})'.format(self.__class__.__name__, self.path)

    def __hash__(self):
        # type: () -> int
        return hash(self.canonical)

    def __eq__(self, other):
        # type: (object) -> bool
        if not isinstance(other, PartialPath):
            return NotImplemented
        return self.canonical == other.canonical


class AbsolutePath(PartialPath):

    def normalize(self, path):
        # type: (str) -> str
        return expanduser(super().normalize(path))

    def __lt__(self, other):
        # type: (AbsolutePath) -> bool
        # `self < other` indicates that `self` is an ancestor of `other`.
        if not isinstance(other, AbsolutePath):
            return NotImplemented
        prefix = self.canonical + os.sep
        return other.canonical.startswith(prefix)

    def __le__(self, other):
        # type: (AbsolutePath) -> bool
        return self == other or self < other

    def canonical_base(self):
        # type: () -> str
        return os.path.basename(self.canonical)


access = os.access
is_file = os.path.isfile

if access in os.supports_effective_ids:
    def is_readable(path):
        return access(path, os.R_OK, effective_ids=True)
else:
    def is_readable(path):
        return access(path, os.R_OK)


def no_log(message):
    # type: (str) -> None
    pass


class ConsoleLog(object):
    """Log sink printing to the Sublime console."""

    def __init__(self, prefix='Counterpart'):
        # type: (str) -> None
        self.prefix = prefix

    def __call__(self, message):
        # type: (str) -> None
        print('{}: {}'.format(self.prefix, message))


class RecordingLog(object):
    """Log sink keeping every message, for inspection."""

    def __init__(self):
        # type: () -> None
        self.messages = []  # type: list[str]

    def __call__(self, message):
        # type: (str) -> None
        self.messages.append(message)


Settings = collections.namedtuple(
    'Settings',
    'switch_to_visible_if_possible extension_preferences debug'
)


def parse_preferences(table, log=no_log):
    # type: (object, ...) -> dict[str, dict[str, int]]
    # Copy the table, dropping anything that is not a mapping of
    # extension to integer score.
    if not isinstance(table, dict):
        log('ignoring {}: not an object'.format(SETTING_EXTENSION_PREFERENCES))
        return {}
    preferences = {}  # type: dict[str, dict[str, int]]
    for source, targets in table.items():
        if not isinstance(targets, dict):
            log('ignoring preferences for {!r}: not an object'.format(source))
            continue
        scores = {}
        for target, score in targets.items():
            if isinstance(score, bool) or not isinstance(score, int):
                log('ignoring preference {!r} -> {!r}: score {!r} is not an integer'.format(
                    source, target, score
                ))
                continue
            scores[target] = score
        preferences[source] = scores
    return preferences


def load_settings(get, log=no_log):
    # type: (Callable[[str, object], object], ...) -> Settings
    """Build validated settings from a `get(key, default)` callable.

    Works with the `get` method of a `sublime.Settings` object, or of a
    plain dict.
    """
    switch = get(SETTING_SWITCH_TO_VISIBLE, True)
    if not isinstance(switch, bool):
        log('ignoring {}: {!r} is not a boolean'.format(SETTING_SWITCH_TO_VISIBLE, switch))
        switch = True
    table = get(SETTING_EXTENSION_PREFERENCES, None)
    if table is None:
        table = DEFAULT_EXTENSION_PREFERENCES
    debug = get(SETTING_DEBUG, False)
    if not isinstance(debug, bool):
        log('ignoring {}: {!r} is not a boolean'.format(SETTING_DEBUG, debug))
        debug = False
    return Settings(switch, parse_preferences(table, log), debug)


def split_into_directories(path):
    # type: (str) -> list[str]
    # Consecutive separators do not produce empty names.
    names = []
    start = 0
    for idx, c in enumerate(path):
        if is_path_sep(c):
            if idx > start:
                names.append(path[start:idx])
            start = idx + 1
    if start < len(path):
        names.append(path[start:])
    return names


def split_path(path):
    # type: (str) -> tuple[list[str], str, str]
    """Split `path` into its directory names, filename and extension.

    The extension follows the last `.` of the final component and has no
    leading dot.  The filename excludes the extension.  A path ending in a
    separator has an empty filename and extension.
    """
    idx = len(path)
    while idx > 0 and not is_path_sep(path[idx - 1]):
        idx -= 1
    head, tail = path[:idx], path[idx:]
    filename, dot, extension = tail.rpartition('.')
    if not dot:
        filename, extension = tail, ''
    return split_into_directories(head), filename, extension


def similarity(path_a, path_b):
    # type: (str, str) -> int
    """Count the path components that hold the same name in both paths.

    Components are aligned from the last one (the filename) towards the
    root.  A mismatch does not stop the count, so `/a/b/c` and `/a/x/c`
    score 2.
    """
    dirs_a = split_into_directories(path_a)
    dirs_b = split_into_directories(path_b)
    count = 0
    for name_a, name_b in zip(reversed(dirs_a), reversed(dirs_b)):
        if name_a == name_b:
            count += 1
    return count


def extension_score(source_ext, candidate_ext, preferences):
    # type: (str, str, dict[str, dict[str, int]]) -> int
    return preferences.get(source_ext, {}).get(candidate_ext, 0)


def filename_score(path_a, path_b):
    # type: (str, str) -> int
    if split_path(path_a)[1] == split_path(path_b)[1]:
        return 1
    return 0


def final_score(path_a, path_b, source_ext, candidate_ext, preferences, log=no_log):
    # type: (str, str, str, str, dict[str, dict[str, int]], ...) -> int
    path_similarity = similarity(path_a, path_b)
    ext_score = extension_score(source_ext, candidate_ext, preferences) * EXTENSION_WEIGHT
    name_score = filename_score(path_a, path_b)
    log('score {} against {}: similarity {}, extension {}, filename {}'.format(
        path_b, path_a, path_similarity, ext_score, name_score
    ))
    return path_similarity + ext_score + name_score


def find_highest_preference(extension, preferences):
    # type: (str, dict[str, dict[str, int]]) -> tuple[str, int]|None
    # Only positive scores count as a preference.  Equal scores resolve to
    # the lexically first extension.
    choices = preferences.get(extension)
    if not choices:
        return None
    best = None
    highest = 0
    for ext in sorted(choices):
        score = choices[ext]
        if score > highest:
            best = ext
            highest = score
    if best is None:
        return None
    return best, highest


Candidate = collections.namedtuple('Candidate', 'path score')


def rank_candidates(reference, paths, preferences, log=no_log):
    # type: (str, Iterable[str], dict[str, dict[str, int]], ...) -> list[Candidate]
    """Score each of `paths` as a counterpart of `reference`, best first."""
    source_ext = split_path(reference)[2]
    ref = AbsolutePath(reference)
    seen = set()  # type: set[AbsolutePath]
    ranked = []  # type: list[Candidate]
    for path in paths:
        candidate = AbsolutePath(path)
        if candidate == ref or candidate in seen:
            continue
        seen.add(candidate)
        score = final_score(
            reference, path, source_ext, split_path(path)[2], preferences, log
        )
        ranked.append(Candidate(path, score))
    ranked.sort(key=lambda c: (-c.score, c.path))
    return ranked


def best_candidate(reference, paths, preferences, log=no_log):
    # type: (str, Iterable[str], dict[str, dict[str, int]], ...) -> Candidate|None
    ranked = rank_candidates(reference, paths, preferences, log)
    if ranked:
        return ranked[0]
    return None


def search_folders(folders, directory):
    # type: (Iterable[str], str) -> list[str]
    # Keep only the outermost of nested folders, and add `directory` if no
    # folder contains it.
    window_folders = [AbsolutePath(f) for f in folders]
    kept = []  # type: list[AbsolutePath]
    for after, folder in enumerate(window_folders, start=1):
        if any(f <= folder for f in kept):
            # If a parent of this folder has appeared, do not keep
            pass
        elif any(f < folder for f in window_folders[after:]):
            # If a parent of this folder is yet to come, do not keep
            pass
        else:
            kept.append(folder)
    if directory:
        here = AbsolutePath(directory)
        if not any(f <= here for f in kept):
            kept.append(here)
    return [str(f) for f in kept]


def find_counterparts(reference, folders, preferences, excludes=(), log=no_log):
    # type: (str, Iterable[str], dict[str, dict[str, int]], Container[str], ...) -> list[str]
    """Find files under `folders` that could be counterparts of `reference`.

    A counterpart has the same filename as `reference` and an extension
    listed in the preferences for the reference extension.
    """
    _dirs, stem, extension = split_path(reference)
    wanted = preferences.get(extension)
    if not stem or not wanted:
        log('no counterpart extensions for {}'.format(reference))
        return []
    ref = AbsolutePath(reference)
    home = get_home()
    seen = set()  # type: set[AbsolutePath]
    found = []  # type: list[str]
    for folder in folders:
        if AbsolutePath(folder) <= home:
            # too big to search recursively
            log('skip {}: contains home folder'.format(folder))
            continue
        log('searching under {}'.format(folder))
        for dirpath, dirnames, filenames in os.walk(folder):
            i = 0
            dirnames.sort()
            while i < len(dirnames):
                if dirnames[i] in excludes:
                    log('skip {}'.format(os.path.join(dirpath, dirnames[i])))
                    del dirnames[i]
                else:
                    i += 1
            for filename in sorted(filenames):
                _d, name, ext = split_path(filename)
                if name != stem or ext not in wanted:
                    continue
                path = os.path.join(dirpath, filename)
                candidate = AbsolutePath(path)
                if candidate == ref or candidate in seen:
                    continue
                if not is_readable(path):
                    log('skip {}: not readable'.format(path))
                    continue
                seen.add(candidate)
                found.append(path)
    return found


def preferred_sibling(reference, preferences, host, log=no_log):
    # type: (str, dict[str, dict[str, int]], Host, ...) -> str|None
    # A sibling with the most preferred extension cannot be outscored, so
    # it is checked before searching any folders.
    _dirs, stem, extension = split_path(reference)
    highest = find_highest_preference(extension, preferences)
    if not stem or highest is None:
        return None
    path = os.path.join(
        host.directory_of(reference), '{}.{}'.format(stem, highest[0])
    )
    if host.file_exists(path):
        log('found preferred sibling {}'.format(path))
        return path
    return None


def counterpart_for(reference, folders, preferences, host, excludes=(), log=no_log):
    # type: (str, Iterable[str], dict[str, dict[str, int]], Host, Container[str], ...) -> str|None
    sibling = preferred_sibling(reference, preferences, host, log)
    if sibling is not None:
        return sibling
    folders = search_folders(folders, host.directory_of(reference))
    paths = find_counterparts(reference, folders, preferences, excludes, log)
    best = best_candidate(reference, paths, preferences, log)
    if best is None:
        return None
    log('best counterpart {} (score {})'.format(best.path, best.score))
    return best.path


OpenWindow = collections.namedtuple('OpenWindow', 'handle path')
OpenBuffer = collections.namedtuple('OpenBuffer', 'handle path')


class Host(object):
    """Editor and filesystem operations used to resolve a counterpart."""

    def list_windows(self):
        # type: () -> list[OpenWindow]
        raise NotImplementedError

    def list_buffers(self):
        # type: () -> list[OpenBuffer]
        raise NotImplementedError

    def resolve_absolute_path(self, path, base_dir):
        # type: (str, str) -> str
        raise NotImplementedError

    def directory_of(self, path):
        # type: (str) -> str
        raise NotImplementedError

    def file_exists(self, path):
        # type: (str) -> bool
        raise NotImplementedError

    def activate_window(self, handle):
        raise NotImplementedError

    def activate_buffer(self, handle):
        raise NotImplementedError

    def open_path(self, path):
        # type: (str) -> None
        raise NotImplementedError

    def current_reference_path(self):
        # type: () -> str
        raise NotImplementedError


class FileSystemHost(Host):

    def resolve_absolute_path(self, path, base_dir):
        # type: (str, str) -> str
        path = expanduser(path)
        if not os.path.isabs(path):
            path = os.path.join(base_dir, path)
        return os.path.abspath(path)

    def directory_of(self, path):
        # type: (str) -> str
        return os.path.dirname(path)

    def file_exists(self, path):
        # type: (str) -> bool
        try:
            return is_file(path) and is_readable(path)
        except (OSError, ValueError):
            return False


class SublimeHost(FileSystemHost):
    """Host backed by Sublime `Window` and `View` objects.

    `windows` returns every open Sublime window, normally
    `sublime.windows`.  The visible views are the active view of each group.
    """

    def __init__(self, window, windows=None):
        super().__init__()
        self.window = window
        if windows is None:
            def windows():
                return [window]
        self._windows = windows

    def list_windows(self):
        # type: () -> list[OpenWindow]
        result = []
        for window in self._windows():
            for group in range(window.num_groups()):
                view = window.active_view_in_group(group)
                if view is not None:
                    result.append(OpenWindow(view, view.file_name()))
        return result

    def list_buffers(self):
        # type: () -> list[OpenBuffer]
        result = []
        for window in self._windows():
            for view in window.views():
                result.append(OpenBuffer(view, view.file_name()))
        return result

    def activate_window(self, view):
        window = view.window() or self.window
        window.focus_view(view)
        if window is not self.window:
            window.bring_to_front()

    def activate_buffer(self, view):
        window = view.window() or self.window
        window.focus_view(view)

    def open_path(self, path):
        # type: (str) -> None
        view = self.window.open_file(path)
        self.window.focus_view(view)

    def current_reference_path(self):
        # type: () -> str
        view = self.window.active_view()
        if view is None:
            return ''
        return view.file_name() or ''


Resolution = collections.namedtuple('Resolution', 'state path')


class Selector(object):
    """Show a resolved path using the cheapest of the available means.

    In order: switch to a visible view, switch to a loaded view, open the
    file.  Host state is read once per call to `resolve`.
    """

    def __init__(self, host, switch_to_visible_if_possible=True, log=no_log):
        # type: (Host, bool, Callable[[str], None]) -> None
        self.host = host
        self.switch_to_visible_if_possible = switch_to_visible_if_possible
        self.log = log

    def prefer_same_directory(self, path, reference):
        # type: (str, str) -> str
        if not reference:
            return path
        name = os.path.basename(path)
        if not name:
            return path
        sibling = os.path.join(self.host.directory_of(reference), name)
        self.log('checking for {} beside {}'.format(name, reference))
        if self.host.file_exists(sibling):
            self.log('found counterpart in current directory: {}'.format(sibling))
            return sibling
        return path

    def _switch_to_visible(self, target, base_dir):
        # type: (str, str) -> Resolution|None
        windows = []
        for window in self.host.list_windows():
            if window.path:
                path = self.host.resolve_absolute_path(window.path, base_dir)
                windows.append((window, path))

        for window, path in windows:
            if path == target:
                self.host.activate_window(window.handle)
                self.log('found exact match in window: {}'.format(path))
                return Resolution(RESOLVED_SWITCHED_EXACT, path)

        target_dir = AbsolutePath(self.host.directory_of(target))
        target_name = AbsolutePath(target).canonical_base()
        for window, path in windows:
            if (
                AbsolutePath(self.host.directory_of(path)) == target_dir
                and AbsolutePath(path).canonical_base() == target_name
            ):
                self.host.activate_window(window.handle)
                self.log('found dir+name match in window: {}'.format(path))
                return Resolution(RESOLVED_SWITCHED_DIR_NAME, path)
        return None

    def _switch_to_buffer(self, target, base_dir):
        # type: (str, str) -> Resolution|None
        for buf in self.host.list_buffers():
            if not buf.path:
                continue
            path = self.host.resolve_absolute_path(buf.path, base_dir)
            if path == target:
                self.host.activate_buffer(buf.handle)
                self.log('switching to existing buffer: {}'.format(path))
                return Resolution(RESOLVED_SWITCHED_BUFFER, path)
        return None

    def resolve(self, path):
        # type: (str) -> Resolution
        reference = self.host.current_reference_path()
        base_dir = self.host.directory_of(reference) if reference else ''
        prioritized = self.prefer_same_directory(path, reference)
        target = self.host.resolve_absolute_path(prioritized, base_dir)
        self.log('original path: {}'.format(path))
        self.log('prioritized path: {}'.format(prioritized))
        self.log('absolute path: {}'.format(target))

        if self.switch_to_visible_if_possible:
            resolution = self._switch_to_visible(target, base_dir)
            if resolution is not None:
                return resolution

        resolution = self._switch_to_buffer(target, base_dir)
        if resolution is not None:
            return resolution

        self.log('opening new buffer for: {}'.format(target))
        self.host.open_path(target)
        return Resolution(RESOLVED_OPENED, target)
