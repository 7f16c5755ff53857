# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmexchange/core/xml_utils.py
"""Shared lxml helpers

Parsing with a hardened parser, whitespace pruning, namespace stripping and
re-qualification, schema loading and serialization. Both XML codecs and the
libvirt accessor layer go through these helpers.
"""
from __future__ import annotations

import copy
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from lxml import etree

from .exceptions import MalformedStructure


def _parser() -> etree.XMLParser:
    # No DTD/entity expansion and no network access for untrusted uploads.
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
        remove_comments=False,
    )


def parse_xml(data: Union[bytes, str]) -> etree._Element:
    """Parse XML bytes/text and return the root element.

    Args:
        data: Raw XML document

    Returns:
        Root element of the parsed document

    Raises:
        MalformedStructure: the input is not well-formed XML
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        root = etree.fromstring(data, _parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        raise MalformedStructure(msg=f"Could not parse XML document: {e}", cause=e) from e
    if root is None:
        raise MalformedStructure(msg="Empty XML document")
    return root


def remove_formatting_nodes(root: etree._Element) -> etree._Element:
    """Drop whitespace-only text and tail nodes (pretty-print indentation).

    Example:
        >>> r = parse_xml(b"<a>\\n  <b/>\\n</a>")
        >>> etree.tostring(remove_formatting_nodes(r))
        b'<a><b/></a>'
    """
    for el in root.iter():
        if el.text is not None and not el.text.strip():
            el.text = None
        if el.tail is not None and not el.tail.strip():
            el.tail = None
    return root


def default_namespace(root: etree._Element) -> Optional[str]:
    return etree.QName(root).namespace


def strip_namespaces(root: etree._Element) -> etree._Element:
    """Rewrite every element tag to its local name so plain XPath works."""
    for el in root.iter():
        if isinstance(el.tag, str):
            el.tag = etree.QName(el).localname
    etree.cleanup_namespaces(root)
    return root


def qualify(root: etree._Element, namespace: str) -> etree._Element:
    """Return a copy of an un-namespaced tree with every element put into ``namespace``."""

    def _copy(src: etree._Element, dst_parent: Optional[etree._Element]) -> etree._Element:
        tag = "{%s}%s" % (namespace, src.tag)
        if dst_parent is None:
            dst = etree.Element(tag, nsmap={None: namespace})
        else:
            dst = etree.SubElement(dst_parent, tag)
        for k, v in src.attrib.items():
            dst.set(k, v)
        dst.text = src.text
        dst.tail = src.tail
        for child in src:
            if isinstance(child.tag, str):
                _copy(child, dst)
            else:
                # comments and processing instructions keep their position
                dst.append(_clone(child))
        return dst

    return _copy(root, None)


def _clone(node: etree._Element) -> etree._Element:
    if isinstance(node, etree._Comment):
        out = etree.Comment(node.text)
    else:
        out = etree.ProcessingInstruction(node.target, node.text)
    out.tail = node.tail
    return out


@lru_cache(maxsize=None)
def load_xml_schema(path: Path) -> etree.XMLSchema:
    return etree.XMLSchema(etree.parse(str(path)))


@lru_cache(maxsize=None)
def load_relaxng(path: Path) -> etree.RelaxNG:
    return etree.RelaxNG(etree.parse(str(path)))


def schema_errors(validator: Union[etree.XMLSchema, etree.RelaxNG], root: etree._Element) -> Optional[str]:
    """Validate and return None, or a one-line summary of the first errors."""
    if validator.validate(root):
        return None
    errs = [f"line {e.line}: {e.message}" for e in list(validator.error_log)[:3]]
    return "; ".join(errs) or "document does not match schema"


def to_bytes(root: etree._Element, *, pretty: bool = False) -> bytes:
    """Serialize an element tree as UTF-8 with an XML declaration."""
    if pretty:
        root = copy.deepcopy(root)
        etree.indent(root, space="  ")
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=pretty)


__all__ = [
    "parse_xml",
    "remove_formatting_nodes",
    "default_namespace",
    "strip_namespaces",
    "qualify",
    "load_xml_schema",
    "load_relaxng",
    "schema_errors",
    "to_bytes",
]
