import os
import traceback

import sublime  # type: ignore
import sublime_plugin  # type: ignore

from .counterpart import (
    SETTINGS_FILE,
    ConsoleLog,
    Selector,
    SublimeHost,
    counterpart_for,
    load_settings,
    no_log,
)

# A view setting `counterpart.<name>` overrides the package setting `<name>`.
VIEW_SETTING_PREFIX = 'counterpart.'


def settings_getter(view):
    package = sublime.load_settings(SETTINGS_FILE)
    view_settings = view.settings() if view is not None else None

    def get(key, default=None):
        if view_settings is not None and view_settings.has(VIEW_SETTING_PREFIX + key):
            return view_settings.get(VIEW_SETTING_PREFIX + key)
        return package.get(key, default)

    return get


class CounterpartMixin(object):
    # Not a command itself, so Sublime does not register it.

    def _setup(self):
        view = self.window.active_view()
        settings = load_settings(settings_getter(view), ConsoleLog())
        log = ConsoleLog() if settings.debug else no_log
        host = SublimeHost(self.window, sublime.windows)
        return view, settings, log, host

    def _fail(self, e):
        traceback.print_exc()
        sublime.status_message('Counterpart: {}'.format(e.__class__.__name__))


class counterpart_open(CounterpartMixin, sublime_plugin.WindowCommand):

    def is_enabled(self):
        view = self.window.active_view()
        return view is not None and bool(view.file_name())

    def run(self):
        try:
            view, settings, log, host = self._setup()
            reference = host.current_reference_path()
            if not reference:
                sublime.status_message('Counterpart: file has not been saved')
                return
            excludes = view.settings().get('folder_exclude_patterns') or []
            path = counterpart_for(
                reference,
                self.window.folders(),
                settings.extension_preferences,
                host,
                excludes,
                log,
            )
            if path is None:
                sublime.status_message(
                    'Counterpart: no counterpart for {}'.format(os.path.basename(reference))
                )
                return
            resolution = Selector(host, settings.switch_to_visible_if_possible, log).resolve(path)
            log('{} {}'.format(resolution.state, resolution.path))
        except Exception as e:
            self._fail(e)


class counterpart_open_path(CounterpartMixin, sublime_plugin.WindowCommand):

    def run(self, path):
        try:
            view, settings, log, host = self._setup()
            resolution = Selector(host, settings.switch_to_visible_if_possible, log).resolve(path)
            log('{} {}'.format(resolution.state, resolution.path))
        except Exception as e:
            self._fail(e)
