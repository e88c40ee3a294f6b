"""Script builders: structured requests in, webview script text out.

Every script is a function body ending in ``return``; the UI executor is
expected to evaluate it as such (see ``executor.as_expression``). Values
supplied by callers are always embedded as JSON literals.
"""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from typing import Iterable, Optional, Union

RESIZE_SENTINEL_PREFIX = "__BRIDGE_RESIZE__"
_RESIZE_SCRIPT_RE = re.compile(r"return '__BRIDGE_RESIZE__(\d+)x(\d+)__'")

DEFAULT_DOM_DEPTH = 10
DEFAULT_DOM_MAX_NODES = 500


def js_literal(value: object) -> str:
    """Encode a value as a JSON literal safe to splice into a script."""
    # ensure_ascii keeps U+2028/U+2029 escaped as well.
    return json.dumps(value, ensure_ascii=True)


@lru_cache(maxsize=None)
def load_template(name: str) -> str:
    return resources.files(__name__).joinpath(name).read_text(encoding="utf-8")


# -----------------------------------------------------------------------------
# query
# -----------------------------------------------------------------------------


class QueryKind(enum.Enum):
    TEXT = "text"
    HTML = "html"
    OUTER_HTML = "outerHTML"
    VALUE = "value"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class QueryProperty:
    """What to read from the matched element.

    ``attribute`` is only set for :attr:`QueryKind.ATTRIBUTE`.
    """

    kind: QueryKind
    attribute: Optional[str] = None

    @classmethod
    def parse(cls, name: str) -> "QueryProperty":
        for kind in (QueryKind.TEXT, QueryKind.HTML, QueryKind.OUTER_HTML, QueryKind.VALUE):
            if name == kind.value:
                return cls(kind)
        return cls(QueryKind.ATTRIBUTE, attribute=name)


def _element_expression(prop: QueryProperty) -> str:
    if prop.kind is QueryKind.TEXT:
        return "el.textContent"
    if prop.kind is QueryKind.HTML:
        return "el.innerHTML"
    if prop.kind is QueryKind.OUTER_HTML:
        return "el.outerHTML"
    if prop.kind is QueryKind.VALUE:
        return "el.value"
    if prop.kind is QueryKind.ATTRIBUTE:
        return f"el.getAttribute({js_literal(prop.attribute)})"
    raise ValueError(f"Unhandled query kind: {prop.kind}")


def build_query_script(selector: str, prop: Union[str, QueryProperty] = "text") -> str:
    """Read one property of the first element matching ``selector``.

    A missing element yields ``null``.
    """
    if isinstance(prop, str):
        prop = QueryProperty.parse(prop)
    return (
        "return (() => {\n"
        f"    const el = document.querySelector({js_literal(selector)});\n"
        f"    return el ? {_element_expression(prop)} : null;\n"
        "})()"
    )


# -----------------------------------------------------------------------------
# Templated scripts
# -----------------------------------------------------------------------------


def build_dom_script(
    selector: Optional[str] = None,
    max_depth: int = DEFAULT_DOM_DEPTH,
    max_nodes: int = DEFAULT_DOM_MAX_NODES,
) -> str:
    """Serialize a simplified DOM tree, capped by depth and node count."""
    if max_depth < 0 or max_nodes < 0:
        raise ValueError("depth and node limits must be non-negative")
    # User-supplied text is substituted last so it is never re-scanned.
    return (
        load_template("dom.js")
        .replace("{MAX_DEPTH}", str(int(max_depth)))
        .replace("{MAX_NODES}", str(int(max_nodes)))
        .replace("{SELECTOR}", js_literal(selector))
    )


def build_inspect_script(selector: str) -> str:
    return load_template("inspect.js").replace("{SELECTOR}", js_literal(selector))


def unique_classes(classes: Iterable[str]) -> list[str]:
    """De-duplicate class names, keeping first-seen order."""
    return list(dict.fromkeys(cls for cls in classes if cls))


def build_validate_classes_script(classes: Iterable[str]) -> str:
    return load_template("validate_classes.js").replace(
        "{CLASSES}", js_literal(unique_classes(classes))
    )


def build_diagnose_script() -> str:
    return load_template("diagnose.js")


# -----------------------------------------------------------------------------
# resize sentinel
# -----------------------------------------------------------------------------


def resize_sentinel(width: int, height: int) -> str:
    return f"{RESIZE_SENTINEL_PREFIX}{int(width)}x{int(height)}__"


def build_resize_script(width: int, height: int) -> str:
    """The window is out of reach of scripts, so this only echoes a sentinel
    the UI executor has to recognise and act on itself."""
    return f"return '{resize_sentinel(width, height)}'"


def parse_resize_sentinel(script: str) -> Optional[tuple[int, int]]:
    """Return ``(width, height)`` if ``script`` is exactly a resize script.

    Only the whole script built by :func:`build_resize_script` counts, so a
    sentinel embedded in a selector or other value is evaluated as usual.
    """
    if not script:
        return None
    match = _RESIZE_SCRIPT_RE.fullmatch(script)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


# -----------------------------------------------------------------------------
# Interaction helpers used by the MCP front end
# -----------------------------------------------------------------------------


def build_query_all_script(selector: str) -> str:
    return (
        "return (() => {\n"
        f"    const els = document.querySelectorAll({js_literal(selector)});\n"
        "    return JSON.stringify(Array.from(els).map((el, i) => ({\n"
        "        index: i,\n"
        "        tag: el.tagName.toLowerCase(),\n"
        "        id: el.id || null,\n"
        "        class: (typeof el.className === 'string' && el.className) || null,\n"
        "        text: (el.textContent || '').trim().substring(0, 100) || null\n"
        "    })));\n"
        "})()"
    )


def build_click_script(selector: str) -> str:
    return (
        "return (() => {\n"
        f"    const el = document.querySelector({js_literal(selector)});\n"
        "    if (el) { el.click(); return 'clicked'; }\n"
        "    return 'element not found';\n"
        "})()"
    )


def build_type_text_script(selector: str, text: str) -> str:
    return (
        "return (() => {\n"
        f"    const el = document.querySelector({js_literal(selector)});\n"
        "    if (el) {\n"
        f"        el.value = {js_literal(text)};\n"
        "        el.dispatchEvent(new Event('input', { bubbles: true }));\n"
        "        return 'typed';\n"
        "    }\n"
        "    return 'element not found';\n"
        "})()"
    )
