"""Extension host: isolated namespaces, exports discovery, preferences"""

from .host import ExtensionHost, ExtensionInstance
from .namespace import IsolatedNamespace, find_generated_exports, generated_exports_of
from .preferences import PreferenceStore, PreferencesEditor, SharedPreferences

__all__ = [
    "ExtensionHost",
    "ExtensionInstance",
    "IsolatedNamespace",
    "find_generated_exports",
    "generated_exports_of",
    "PreferenceStore",
    "SharedPreferences",
    "PreferencesEditor",
]
