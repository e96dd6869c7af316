import pytest


def pytest_collect_directory(path, parent):
    # The repository root is the Binary Ninja plugin package; collect it as a
    # plain directory so pytest does not import its __init__.py (which
    # registers the plugin when a ``binaryninja`` module is importable).
    if path == parent.config.rootpath:
        return pytest.Dir.from_parent(parent, path=path)
    return None
