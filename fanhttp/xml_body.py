"""Dict-to-XML serialization for request bodies.

Used by the body builder when a request declares
``Content-Type: application/xml``. Element names are taken directly from
dict keys; there is no support for namespaces or schema-driven renaming.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any


def dict_to_xml(data: dict[str, Any]) -> bytes:
    """Convert a Python dict to XML bytes for use as an HTTP request body.

    The dict must have exactly one top-level key, which becomes the root
    element name.  Nested dicts become child elements.  Lists become
    repeated sibling elements with the same tag name.  ``None`` values
    become empty elements (``<Tag/>``).  Keys starting with ``@`` become
    attributes of the enclosing element and ``#text`` becomes its text.
    Other scalars become text content; booleans are written as
    ``true``/``false``.

    Args:
        data: Dict with exactly one top-level key (the root element name).

    Returns:
        UTF-8 encoded XML bytes with an XML declaration.

    Raises:
        ValueError: If *data* does not have exactly one top-level key, or a
            key is not a usable element name.
    """
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(
            f"dict_to_xml expects a dict with exactly one top-level key "
            f"(the root element), got {type(data).__name__} with "
            f"{len(data) if isinstance(data, dict) else 'N/A'} keys"
        )

    root_tag = next(iter(data))
    root_element = _dict_to_element(root_tag, data[root_tag])
    return ET.tostring(root_element, encoding="utf-8", xml_declaration=True)


def _dict_to_element(tag: Any, value: Any) -> ET.Element:
    """Recursively convert a tag + value pair into an XML Element.

    - dict → element with child sub-elements for each key
    - list → repeated sibling elements (handled by the caller)
    - scalar → element with text content
    - None → empty element
    """
    if not isinstance(tag, str) or not tag or tag[0] in "@#" or any(c.isspace() for c in tag):
        raise ValueError(f"invalid XML element name: {tag!r}")
    element = ET.Element(tag)

    if value is None:
        pass
    elif isinstance(value, dict):
        for key, child_value in value.items():
            if isinstance(key, str) and key.startswith("@"):
                element.set(key[1:], _scalar_text(child_value))
                continue
            if key == "#text":
                element.text = _scalar_text(child_value)
                continue
            if isinstance(child_value, (list, tuple)):
                for item in child_value:
                    element.append(_dict_to_element(key, item))
            else:
                element.append(_dict_to_element(key, child_value))
    elif isinstance(value, (list, tuple)):
        # Nested list without a key of its own: wrap each item as <item>.
        for item in value:
            element.append(_dict_to_element("item", item))
    else:
        element.text = _scalar_text(value)

    return element


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        raise ValueError(f"cannot use {type(value).__name__} as XML text or attribute")
    return "" if value is None else str(value)
