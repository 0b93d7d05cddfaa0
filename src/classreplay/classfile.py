"""Structured access to the JVM class-file name table.

Parses the constant pool and just enough of the class body to know which
Utf8 entries are name-reference slots:

- class-name slots: the name of a ``CONSTANT_Class`` entry (an internal name
  such as ``com/example/App$Proxy7`` or an array descriptor)
- descriptor slots: field/method descriptors, ``NameAndType`` and
  ``MethodType`` descriptors, ``Signature`` attributes, local-variable
  descriptors inside ``Code``, record component descriptors, and the type
  and class descriptors of annotations (including parameter, type and
  default-value annotations)

Everything after the constant pool is kept verbatim. Utf8 payloads stay raw
until a slot is rewritten, so an unmodified parse/serialize is byte-identical.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass, field

from classreplay.errors import FormatViolation

MAGIC = 0xCAFEBABE

CONSTANT_UTF8 = 1
CONSTANT_INTEGER = 3
CONSTANT_FLOAT = 4
CONSTANT_LONG = 5
CONSTANT_DOUBLE = 6
CONSTANT_CLASS = 7
CONSTANT_STRING = 8
CONSTANT_FIELDREF = 9
CONSTANT_METHODREF = 10
CONSTANT_INTERFACE_METHODREF = 11
CONSTANT_NAME_AND_TYPE = 12
CONSTANT_METHOD_HANDLE = 15
CONSTANT_METHOD_TYPE = 16
CONSTANT_DYNAMIC = 17
CONSTANT_INVOKE_DYNAMIC = 18
CONSTANT_MODULE = 19
CONSTANT_PACKAGE = 20

# Payload sizes of every fixed-width constant
_FIXED_SIZES = {
    CONSTANT_INTEGER: 4,
    CONSTANT_FLOAT: 4,
    CONSTANT_LONG: 8,
    CONSTANT_DOUBLE: 8,
    CONSTANT_CLASS: 2,
    CONSTANT_STRING: 2,
    CONSTANT_FIELDREF: 4,
    CONSTANT_METHODREF: 4,
    CONSTANT_INTERFACE_METHODREF: 4,
    CONSTANT_NAME_AND_TYPE: 4,
    CONSTANT_METHOD_HANDLE: 3,
    CONSTANT_METHOD_TYPE: 2,
    CONSTANT_DYNAMIC: 4,
    CONSTANT_INVOKE_DYNAMIC: 4,
    CONSTANT_MODULE: 2,
    CONSTANT_PACKAGE: 2,
}

# Long and double take two pool slots
_WIDE_TAGS = {CONSTANT_LONG, CONSTANT_DOUBLE}

MAX_UTF8_LENGTH = 0xFFFF

_ANNOTATION_ATTRIBUTES = {"RuntimeVisibleAnnotations", "RuntimeInvisibleAnnotations"}
_PARAMETER_ANNOTATION_ATTRIBUTES = {
    "RuntimeVisibleParameterAnnotations",
    "RuntimeInvisibleParameterAnnotations",
}
_TYPE_ANNOTATION_ATTRIBUTES = {"RuntimeVisibleTypeAnnotations", "RuntimeInvisibleTypeAnnotations"}

# Element-value tags whose payload is a single constant index
_CONST_ELEMENT_TAGS = frozenset("BCDFIJSZs")

# target_info sizes by type-annotation target_type; 0x40/0x41 are variable-length
_TYPE_TARGET_SIZES = {
    0x00: 1, 0x01: 1,
    0x10: 2, 0x11: 2, 0x12: 2,
    0x13: 0, 0x14: 0, 0x15: 0,
    0x16: 1, 0x17: 2,
    0x42: 2, 0x43: 2, 0x44: 2, 0x45: 2, 0x46: 2,
    0x47: 3, 0x48: 3, 0x49: 3, 0x4A: 3, 0x4B: 3,
}
_LOCALVAR_TARGETS = {0x40, 0x41}


def decode_modified_utf8(raw: bytes) -> str:
    """Decode the JVM's modified UTF-8 (NUL as C0 80, surrogate pairs)."""
    return raw.replace(b"\xc0\x80", b"\x00").decode("utf-8", errors="surrogatepass")


def encode_modified_utf8(text: str) -> bytes:
    """Inverse of :func:`decode_modified_utf8`."""
    return text.encode("utf-8", errors="surrogatepass").replace(b"\x00", b"\xc0\x80")


def iter_descriptor_names(text: str) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` spans of class names inside a descriptor.

    Handles field/method descriptors and generic signatures: ``L<name>;``,
    ``L<name><...>;``, type variables ``T<var>;`` and formal type
    parameters ``<var>:`` (which are skipped).
    """
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c == "L" or c == "T":
            end = i + 1
            while end < n and text[end] not in ";<:":
                end += 1
            if end >= n:
                return
            if text[end] == ":" or c == "T":
                i = end + 1
                continue
            yield i + 1, end
            i = end + 1 if text[end] == ";" else end
        elif c == ".":
            # inner class suffix of a parameterized outer type
            i += 1
            while i < n and text[i] not in ";<.":
                i += 1
        else:
            i += 1


class _Reader:
    """Bounds-checked big-endian reader."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.pos = offset

    def take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise FormatViolation(f"truncated class data at offset {self.pos}")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def u1(self) -> int:
        return self.take(1)[0]

    def u2(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u4(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def at_end(self) -> bool:
        return self.pos == len(self.data)


@dataclass
class Constant:
    """One constant-pool entry; ``payload`` excludes the tag (and Utf8 length)."""
    tag: int
    payload: bytes

    def u2(self, offset: int = 0) -> int:
        return struct.unpack_from(">H", self.payload, offset)[0]


@dataclass
class ClassFile:
    """A parsed class file with its name-reference slots indexed.

    Attributes:
        minor_version: Class-file minor version
        major_version: Class-file major version
        constants: Constant pool; index 0 and the slot after long/double are None
        body: Raw bytes following the constant pool
        this_class: Pool index of the declared class
        class_name_slots: Utf8 indices naming a ``CONSTANT_Class`` entry
        descriptor_slots: Utf8 indices holding descriptors or signatures
    """

    minor_version: int
    major_version: int
    constants: list[Constant | None]
    body: bytes
    this_class: int
    class_name_slots: set[int] = field(default_factory=set)
    descriptor_slots: set[int] = field(default_factory=set)

    @classmethod
    def parse(cls, data: bytes) -> ClassFile:
        """Parse class-file bytes.

        Raises:
            FormatViolation: If the data is not a well-formed class file
        """
        reader = _Reader(bytes(data))
        if len(data) < 10 or reader.u4() != MAGIC:
            raise FormatViolation("missing class-file magic number")
        minor = reader.u2()
        major = reader.u2()
        count = reader.u2()
        if count == 0:
            raise FormatViolation("empty constant pool")

        constants: list[Constant | None] = [None]
        while len(constants) < count:
            tag = reader.u1()
            if tag == CONSTANT_UTF8:
                length = reader.u2()
                constants.append(Constant(tag, reader.take(length)))
            elif tag in _FIXED_SIZES:
                constants.append(Constant(tag, reader.take(_FIXED_SIZES[tag])))
                if tag in _WIDE_TAGS:
                    constants.append(None)
            else:
                raise FormatViolation(
                    f"unknown constant tag {tag} at pool index {len(constants)}"
                )
        if len(constants) != count:
            raise FormatViolation("wide constant overruns the constant pool")

        body_start = reader.pos
        classfile = cls(
            minor_version=minor,
            major_version=major,
            constants=constants,
            body=reader.data[body_start:],
            this_class=0,
        )
        classfile._index_pool()
        classfile._index_body(_Reader(reader.data, body_start))
        return classfile

    def _constant(self, index: int, tag: int) -> Constant:
        if not 0 < index < len(self.constants):
            raise FormatViolation(f"constant index {index} out of range")
        constant = self.constants[index]
        if constant is None or constant.tag != tag:
            raise FormatViolation(f"constant {index} is not of tag {tag}")
        return constant

    def _utf8_slot(self, index: int) -> int:
        self._constant(index, CONSTANT_UTF8)
        return index

    def _index_pool(self) -> None:
        for constant in self.constants:
            if constant is None:
                continue
            if constant.tag == CONSTANT_CLASS:
                self.class_name_slots.add(self._utf8_slot(constant.u2()))
            elif constant.tag == CONSTANT_NAME_AND_TYPE:
                self.descriptor_slots.add(self._utf8_slot(constant.u2(2)))
            elif constant.tag == CONSTANT_METHOD_TYPE:
                self.descriptor_slots.add(self._utf8_slot(constant.u2()))

    def _index_body(self, reader: _Reader) -> None:
        reader.u2()  # access flags
        self.this_class = reader.u2()
        self._constant(self.this_class, CONSTANT_CLASS)
        super_class = reader.u2()
        if super_class:
            self._constant(super_class, CONSTANT_CLASS)
        reader.take(2 * reader.u2())  # interfaces

        for _ in range(2):  # fields, then methods
            for _ in range(reader.u2()):
                reader.u2()  # access flags
                reader.u2()  # name
                self.descriptor_slots.add(self._utf8_slot(reader.u2()))
                self._index_attributes(reader)

        self._index_attributes(reader)
        if not reader.at_end():
            raise FormatViolation("trailing bytes after class attributes")

    def _index_attributes(self, reader: _Reader) -> None:
        for _ in range(reader.u2()):
            name = self.utf8(reader.u2())
            info = reader.take(reader.u4())
            if name == "Signature":
                self.descriptor_slots.add(self._utf8_slot(_Reader(info).u2()))
            elif name == "Code":
                code = _Reader(info)
                code.take(4)  # max_stack, max_locals
                code.take(code.u4())
                code.take(8 * code.u2())  # exception table
                self._index_attributes(code)
            elif name in ("LocalVariableTable", "LocalVariableTypeTable"):
                table = _Reader(info)
                for _ in range(table.u2()):
                    table.take(6)  # start_pc, length, name_index
                    self.descriptor_slots.add(self._utf8_slot(table.u2()))
                    table.u2()  # local slot
            elif name in _ANNOTATION_ATTRIBUTES:
                table = _Reader(info)
                for _ in range(table.u2()):
                    self._index_annotation(table)
            elif name in _PARAMETER_ANNOTATION_ATTRIBUTES:
                table = _Reader(info)
                for _ in range(table.u1()):
                    for _ in range(table.u2()):
                        self._index_annotation(table)
            elif name in _TYPE_ANNOTATION_ATTRIBUTES:
                table = _Reader(info)
                for _ in range(table.u2()):
                    self._skip_type_target(table)
                    self._index_annotation(table)
            elif name == "AnnotationDefault":
                self._index_element_value(_Reader(info))
            elif name == "Record":
                table = _Reader(info)
                for _ in range(table.u2()):
                    table.u2()  # component name
                    self.descriptor_slots.add(self._utf8_slot(table.u2()))
                    self._index_attributes(table)

    def _index_annotation(self, reader: _Reader) -> None:
        self.descriptor_slots.add(self._utf8_slot(reader.u2()))
        for _ in range(reader.u2()):
            reader.u2()  # element name
            self._index_element_value(reader)

    def _index_element_value(self, reader: _Reader) -> None:
        tag = chr(reader.u1())
        if tag in _CONST_ELEMENT_TAGS:
            reader.u2()
        elif tag == "e":
            self.descriptor_slots.add(self._utf8_slot(reader.u2()))
            reader.u2()  # enum constant name
        elif tag == "c":
            self.descriptor_slots.add(self._utf8_slot(reader.u2()))
        elif tag == "@":
            self._index_annotation(reader)
        elif tag == "[":
            for _ in range(reader.u2()):
                self._index_element_value(reader)
        else:
            raise FormatViolation(f"unknown annotation element tag {tag!r}")

    def _skip_type_target(self, reader: _Reader) -> None:
        target_type = reader.u1()
        if target_type in _LOCALVAR_TARGETS:
            reader.take(6 * reader.u2())
        elif target_type in _TYPE_TARGET_SIZES:
            reader.take(_TYPE_TARGET_SIZES[target_type])
        else:
            raise FormatViolation(f"unknown type annotation target 0x{target_type:02x}")
        reader.take(2 * reader.u1())  # type_path

    def utf8(self, index: int) -> str:
        """Decoded text of a Utf8 constant."""
        raw = self._constant(index, CONSTANT_UTF8).payload
        try:
            return decode_modified_utf8(raw)
        except UnicodeDecodeError as e:
            raise FormatViolation(f"undecodable Utf8 constant {index}: {e}")

    def set_utf8(self, index: int, text: str) -> None:
        """Replace the text of a Utf8 constant."""
        constant = self._constant(index, CONSTANT_UTF8)
        encoded = encode_modified_utf8(text)
        if len(encoded) > MAX_UTF8_LENGTH:
            raise FormatViolation(f"Utf8 constant {index} exceeds {MAX_UTF8_LENGTH} bytes")
        constant.payload = encoded

    @property
    def name(self) -> str:
        """Declared internal name of the class."""
        return self.utf8(self._constant(self.this_class, CONSTANT_CLASS).u2())

    @property
    def name_slot(self) -> int:
        """Utf8 index holding the declared name."""
        return self._constant(self.this_class, CONSTANT_CLASS).u2()

    def name_slots(self) -> list[int]:
        """All name-reference slots in pool order."""
        return sorted(self.class_name_slots | self.descriptor_slots)

    def slot_names(self, index: int) -> list[tuple[int, int, str]]:
        """Class names held by a slot as ``(start, end, name)`` spans of its text."""
        text = self.utf8(index)
        if index in self.class_name_slots and not text.startswith("["):
            return [(0, len(text), text)]
        return [(start, end, text[start:end]) for start, end in iter_descriptor_names(text)]

    def referenced_class_names(self) -> list[str]:
        """Every class name mentioned in a name slot, first occurrence order."""
        seen: dict[str, None] = {}
        for index in self.name_slots():
            for _, _, name in self.slot_names(index):
                seen.setdefault(name, None)
        return list(seen)

    def to_bytes(self) -> bytes:
        """Serialize back to class-file bytes."""
        out = bytearray(struct.pack(">IHHH", MAGIC, self.minor_version,
                                    self.major_version, len(self.constants)))
        for constant in self.constants[1:]:
            if constant is None:
                continue
            out.append(constant.tag)
            if constant.tag == CONSTANT_UTF8:
                out += struct.pack(">H", len(constant.payload))
            out += constant.payload
        out += self.body
        return bytes(out)


def class_name(data: bytes) -> str:
    """Declared internal name of the class in ``data``."""
    return ClassFile.parse(data).name
