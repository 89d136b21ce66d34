"""Services package - lifecycle, control channel, settings and host facade."""

from services.control_channel import ControlChannel
from services.interceptor import (
    RequestInterceptor,
    create_interceptor,
    create_network,
    create_storage,
)
from services.lifecycle import InstallReport, LifecycleManager, LifecycleState
from services.settings_service import (
    default_settings_path,
    load_settings,
    save_settings,
)

__all__ = [
    'ControlChannel',
    'InstallReport',
    'LifecycleManager',
    'LifecycleState',
    'RequestInterceptor',
    'create_interceptor',
    'create_network',
    'create_storage',
    'default_settings_path',
    'load_settings',
    'save_settings',
]
