"""Module shells written around the concatenated body."""

from __future__ import annotations

from typing import IO, TYPE_CHECKING

from distributor.config import ModuleType

if TYPE_CHECKING:
    from distributor.settings import ModuleConfig

_UMD_OPEN = """(function (root, factory) {{
    if (typeof define === "function" && define.amd) {{
        define("{name}", [], factory);
    }} else if (typeof module === "object" && module.exports) {{
        module.exports = factory();
    }} else {{
        root["{name}"] = factory();
    }}
}}(typeof self !== "undefined" ? self : this, function () {{
"""

OPENINGS: dict[ModuleType, str] = {
    ModuleType.NONE: "",
    ModuleType.COMMONJS: "",
    ModuleType.WEB: "var {name} = (function () {{\n",
    ModuleType.AMD: 'define("{name}", [], function () {{\n',
    ModuleType.UMD: _UMD_OPEN,
}

CLOSINGS: dict[ModuleType, str] = {
    ModuleType.NONE: "",
    ModuleType.COMMONJS: "",
    ModuleType.WEB: "})();\n",
    ModuleType.AMD: "});\n",
    ModuleType.UMD: "}));\n",
}


def opening_text(module_config: ModuleConfig) -> bytes:
    """Return the encoded opening of the module shell (empty for no shell)."""
    template = OPENINGS[module_config.module_type]
    return template.format(name=module_config.module_name).encode("utf-8")


def closing_text(module_config: ModuleConfig) -> bytes:
    """Return the encoded closing of the module shell (empty for no shell)."""
    return CLOSINGS[module_config.module_type].encode("utf-8")


def _write_at(handle: IO[bytes], start: int, data: bytes) -> int:
    if not data:
        return start
    handle.seek(start)
    handle.write(data)
    return start + len(data)


def open_module(handle: IO[bytes], module_config: ModuleConfig) -> int:
    """Write the module opening at the start of the output.

    Args:
        handle (IO[bytes]): output file opened for random access writes
        module_config (ModuleConfig): shell type and bound name

    Returns:
        int: cursor after the opening, 0 when there is no shell
    """
    return _write_at(handle, 0, opening_text(module_config))


def close_module(handle: IO[bytes], module_config: ModuleConfig, start: int) -> int:
    """Write the module closing at ``start``.

    Args:
        handle (IO[bytes]): output file opened for random access writes
        module_config (ModuleConfig): shell type and bound name
        start (int): cursor after the last bundled entry

    Returns:
        int: cursor after the closing, ``start`` when there is no shell
    """
    return _write_at(handle, start, closing_text(module_config))
