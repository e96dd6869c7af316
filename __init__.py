import sys
import importlib.util
from pathlib import Path

# Ensure the plugin directory is available on ``sys.path`` so that
# absolute imports like ``hexagon`` work when the plugin is loaded
# directly by Binary Ninja.
_plugin_dir = str(Path(__file__).resolve().parent)
if _plugin_dir not in sys.path:
    sys.path.insert(0, _plugin_dir)


def module_exists(module_name):
    if module_name in sys.modules:
        return True
    try:
        return importlib.util.find_spec(module_name) is not None
    except (ValueError, ImportError):
        return False


# we want to only run this on a real Binary Ninja installation,
# and expect __package__ to be set by Binary Ninja.
if module_exists("binaryninja") and __package__:
    from binaryninja import BinaryDataNotification, BinaryViewType

    from .hexagon.analysis import ViewInvalidator
    from .hexagon.arch import Hexagon, HexagonCallingConvention

    class _PacketNotification(ViewInvalidator, BinaryDataNotification):
        pass

    arch = Hexagon.register()
    arch.register_calling_convention(
        default_cc := HexagonCallingConvention(arch, "default")
    )
    arch.default_calling_convention = default_cc

    def _attach_packet_analysis(view):
        # one packet analysis state per loaded binary
        if view.arch is not None and view.arch.name == Hexagon.name:
            state = arch.attach_view(view)
            view.register_notification(_PacketNotification(state))

    BinaryViewType.add_binaryview_finalized_event(_attach_packet_analysis)
