"""Reference rewriting over the class-file name table.

Only structurally valid name slots are rewritten: the names of
``CONSTANT_Class`` entries (including the declared name) and class names
embedded in descriptors and signatures. String literals and member names are
never touched, even when they spell a mapped name.

For any mapping that is a bijection on the touched names::

    rewrite(rewrite(data, mapping), invert(mapping)) == data
"""

from __future__ import annotations

from collections.abc import Mapping

from classreplay.classfile import ClassFile
from classreplay.errors import FormatViolation


def invert(mapping: Mapping[str, str]) -> dict[str, str]:
    """Invert a name mapping.

    Raises:
        ValueError: If the mapping is not injective
    """
    inverse = {to: frm for frm, to in mapping.items()}
    if len(inverse) != len(mapping):
        raise ValueError("Mapping is not a bijection; cannot invert")
    return inverse


def rewrite_classfile(classfile: ClassFile, mapping: Mapping[str, str]) -> set[str]:
    """Rewrite ``classfile`` in place and return the set of names touched."""
    touched: set[str] = set()
    for index in classfile.name_slots():
        spans = classfile.slot_names(index)
        if not any(name in mapping for _, _, name in spans):
            continue
        text = classfile.utf8(index)
        parts = []
        last = 0
        for start, end, name in spans:
            if name in mapping:
                parts.append(text[last:start])
                parts.append(mapping[name])
                last = end
                touched.add(name)
        parts.append(text[last:])
        classfile.set_utf8(index, "".join(parts))
    return touched


def rewrite(data: bytes, mapping: Mapping[str, str]) -> bytes:
    """Return ``data`` with every mapped class name replaced.

    Args:
        data: Class-file bytes
        mapping: Internal names to replace, ``{from: to}``

    Returns:
        Rewritten class-file bytes

    Raises:
        FormatViolation: If the data is malformed or a mapped name has no slot
    """
    classfile = ClassFile.parse(data)
    if not mapping:
        return bytes(data)
    touched = rewrite_classfile(classfile, mapping)
    missing = sorted(set(mapping) - touched)
    if missing:
        raise FormatViolation(
            f"no name slot references {', '.join(missing)}", class_name=classfile.name
        )
    return classfile.to_bytes()
