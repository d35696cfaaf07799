import abc
import enum
import struct
import typing
from struct import Struct

from . import Parser, get_parser, read_raw_struct, read_struct, wait
from .exceptions import ParseError, SocksError


class Unit(abc.ABC):
    """Unit is the base class of all units. \
    If you can build your own unit class, you must inherit from it"""

    def __iter__(self):
        return self.get_value()

    @abc.abstractmethod
    def get_value(self) -> typing.Generator:
        "get object you want from bytes"

    @abc.abstractmethod
    def __call__(self, obj: typing.Any) -> bytes:
        "convert user-given object to bytes"

    def pack(self, obj: typing.Any, parent: "BinarySchema") -> bytes:
        "convert the value of a field of `parent` to bytes"
        return self(obj)

    def parse(self, data: bytes, *, strict: bool = True):
        "a convenient function to help you parse fixed bytes"
        return Parser(self.get_value()).parse(data, strict=strict)


class BinarySchemaMetaclass(type):
    def __new__(mcls, name, bases, namespace, **kwargs):
        fields: typing.Dict[str, FieldType] = {}
        for key, member in namespace.items():
            if isinstance(member, (Unit, BinarySchemaMetaclass)):
                fields[key] = member
                namespace[key] = MemberDescriptor(key, member)
        namespace["_fields"] = fields
        return super().__new__(mcls, name, bases, namespace)

    def __str__(cls):
        s = ", ".join(f"{name}={field}" for name, field in cls._fields.items())
        return f"{cls.__name__}({s})"

    def __iter__(cls):
        return cls.get_value()

    def get_value(cls) -> typing.Generator[tuple, typing.Any, "BinarySchema"]:
        "get `BinarySchema` object from bytes"
        mapping: typing.Dict[str, typing.Any] = {}
        parser = yield from get_parser()
        parser._mapping_stack.append(mapping)
        try:
            for name, field in cls._fields.items():
                mapping[name] = yield from field.get_value()
        except SocksError:
            raise
        except Exception as e:
            raise ParseError(f"{cls.__name__}: {e} (parsed {mapping})") from e
        finally:
            parser._mapping_stack.pop()
        return cls(*mapping.values())

    def get_parser(cls) -> Parser:
        return Parser(cls.get_value())

    def parse(cls, data: bytes, *, strict: bool = True) -> "BinarySchema":
        return cls.get_parser().parse(data, strict=strict)


class BinarySchema(metaclass=BinarySchemaMetaclass):
    """Base class of the message layouts. Fields are declared as class
    attributes; instances keep both the values and their encoded bytes."""

    def __init__(self, *args):
        self._modified = True
        if len(args) != len(self.__class__._fields):
            raise ValueError(
                f"need {len(self.__class__._fields)} args, got {len(args)}"
            )
        self.values = {}
        self.bins = {}
        for arg, name in zip(args, self.__class__._fields):
            setattr(self, name, arg)

        if hasattr(self, "__post_init__"):
            self.__post_init__()

    def member_get(self, name):
        return self.values[name]

    def member_set(self, name, value, binary):
        self.bins[name] = binary
        self.values[name] = value
        self._modified = True

    @property
    def binary(self) -> bytes:
        if self._modified:
            self._binary = b"".join(self.bins.values())
            self._modified = False
        return self._binary

    def __str__(self):
        sl = []
        for name in self.__class__._fields:
            value = getattr(self, name)
            sl.append(f"{name}={value!r}")
        s = ", ".join(sl)
        return f"{self.__class__.__name__}({s})"

    def __repr__(self):
        return f"<{self}>"

    def __eq__(self, other) -> bool:
        if not isinstance(other, self.__class__):
            return False
        for name in self.__class__._fields:
            if getattr(self, name) != getattr(other, name):
                return False
        return True


FieldType = typing.Union[typing.Type[BinarySchema], Unit]


class MemberDescriptor:
    __slots__ = ("key", "member")

    def __init__(self, key: str, member: FieldType):
        self.key = key
        self.member = member

    def __get__(self, obj: typing.Optional[BinarySchema], owner):
        if obj is None:
            return self.member
        return obj.member_get(self.key)

    def __set__(self, obj: BinarySchema, value):
        if isinstance(self.member, BinarySchemaMetaclass):
            binary = value.binary
        else:
            binary = self.member.pack(value, obj)
        # `...` stands for "whatever the field must be", e.g. a MustEqual
        if value is ...:
            value = self.member.parse(binary)
        obj.member_set(self.key, value, binary)


class StructUnit(Unit):
    def __init__(self, format_: str):
        self._struct = Struct(format_)

    def __str__(self):
        return f"{self.__class__.__name__}({self._struct.format})"

    def get_value(self):
        return (yield from read_raw_struct(self._struct))[0]

    def __call__(self, obj) -> bytes:
        return self._struct.pack(obj)


uint8 = StructUnit("B")
uint16be = StructUnit(">H")


class Bytes(Unit):
    def __init__(self, length: int):
        if length < 0:
            raise ValueError(f"length must >= 0, but got {length}")
        self.length = length
        self._struct = Struct(f"{length}s")

    def __str__(self):
        return f"{self.__class__.__name__}({self.length})"

    def get_value(self):
        return (yield from read_raw_struct(self._struct))[0]

    def __call__(self, obj: bytes) -> bytes:
        if len(obj) != self.length:
            raise ValueError(f"expect {self.length} bytes, got {len(obj)}")
        return self._struct.pack(obj)


class MustEqual(Unit):
    def __init__(self, unit: Unit, value: typing.Any):
        self.unit = unit
        self.value = value

    def __str__(self):
        return f"{self.__class__.__name__}({self.unit}, {self.value})"

    def get_value(self):
        result = yield from self.unit.get_value()
        if self.value != result:
            raise ValueError(f"expect {self.value}, got {result}")
        return result

    def __call__(self, obj) -> bytes:
        if obj is not ...:
            if self.value != obj:
                raise ValueError(f"expect {self.value}, got {obj}")
        return self.unit(self.value)


class LengthPrefixedBytes(Unit):
    def __init__(self, length_unit: StructUnit):
        self.length_unit = length_unit

    def __str__(self):
        return f"{self.__class__.__name__}({self.length_unit})"

    def get_value(self):
        length = yield from self.length_unit.get_value()
        return (yield from read_struct(f"{length}s"))[0]

    def __call__(self, obj: bytes) -> bytes:
        length = len(obj)
        return self.length_unit(length) + struct.pack(f"{length}s", obj)


class LengthPrefixedObjectList(Unit):
    "a length prefix counting bytes, followed by back-to-back objects"

    def __init__(self, length_unit: StructUnit, object_unit: FieldType):
        self.length_unit = length_unit
        self.object_unit = object_unit

    def __str__(self):
        return f"{self.__class__.__name__}({self.length_unit}, {self.object_unit})"

    def get_value(self):
        length = yield from self.length_unit.get_value()
        (data,) = yield from read_struct(f"{length}s")
        parser = Parser(self._gen())
        return parser.parse(data)

    def _gen(self):
        parser = yield from get_parser()
        lst = []
        yield from wait()
        while parser.has_more_data():
            lst.append((yield from self.object_unit.get_value()))
        return lst

    def __call__(self, obj_list: typing.List[typing.Any]) -> bytes:
        if isinstance(self.object_unit, BinarySchemaMetaclass):
            bytes_ = b"".join(bs.binary for bs in obj_list)
        else:
            bytes_ = b"".join(self.object_unit(bs) for bs in obj_list)
        return self.length_unit(len(bytes_)) + bytes_


class Switch(Unit):
    """Picks the unit for this field from the value of an earlier field.

    An unknown value raises ``error``."""

    def __init__(
        self,
        ref: str,
        cases: typing.Mapping[typing.Any, FieldType],
        *,
        error: typing.Type[Exception] = ParseError,
    ):
        self.ref = ref
        self.cases = cases
        self.error = error

    def __str__(self):
        return f"{self.__class__.__name__}({self.ref}, {self.cases})"

    def select(self, value) -> FieldType:
        try:
            return self.cases[value]
        except KeyError:
            raise self.error(f"no case for {self.ref}={value!r}") from None

    def get_value(self):
        parser = yield from get_parser()
        mapping = parser._mapping_stack[-1]
        unit = self.select(mapping[self.ref])
        return (yield from unit.get_value())

    def __call__(self, obj) -> bytes:
        raise TypeError(f"{self} can only encode a field of a schema")

    def pack(self, obj, parent) -> bytes:
        real_field = self.select(getattr(parent, self.ref))
        return real_field(obj) if isinstance(real_field, Unit) else obj.binary


class SizedIntEnum(Unit):
    def __init__(self, size_unit: StructUnit, enum_class: typing.Type[enum.IntEnum]):
        self.size_unit = size_unit
        self.enum_class = enum_class

    def __str__(self):
        return f"{self.__class__.__name__}({self.size_unit}, {self.enum_class})"

    def get_value(self):
        v = yield from self.size_unit.get_value()
        return self.enum_class(v)

    def __call__(self, obj: enum.IntEnum) -> bytes:
        return self.size_unit(self.enum_class(obj).value)


class Convert(Unit):
    def __init__(self, unit: Unit, *, encode: typing.Callable, decode: typing.Callable):
        self.unit = unit
        self.encode = encode
        self.decode = decode

    def __str__(self):
        return (
            f"{self.__class__.__name__}"
            f"({self.unit}, encode={self.encode}, decode={self.decode})"
        )

    def get_value(self):
        v = yield from self.unit.get_value()
        return self.decode(v)

    def __call__(self, obj: typing.Any) -> bytes:
        return self.unit(self.encode(obj))


class LengthPrefixedString(Convert):
    def __init__(self, length_unit: StructUnit, encoding="utf-8", errors="strict"):
        super().__init__(
            LengthPrefixedBytes(length_unit),
            encode=lambda x: x.encode(encoding, errors),
            decode=lambda x: x.decode(encoding, errors),
        )
