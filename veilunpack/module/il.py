"""CIL method body decoding."""

import struct
from enum import IntEnum
from typing import Any, Callable, Iterator, Optional

from veilunpack.module.model import Instruction


class ILFormatError(ValueError):
    """Raised when a method body or its instruction stream is malformed."""


class Code(IntEnum):
    """Opcodes the rest of the package refers to by name."""
    NOP = 0x00
    LDARG_0 = 0x02
    LDARG_1 = 0x03
    LDSTR = 0x72
    CALL = 0x28
    RET = 0x2A
    CALLVIRT = 0x6F
    NEWOBJ = 0x73
    LDFLD = 0x7B
    STFLD = 0x7D
    SWITCH = 0x45
    LDFTN = 0xFE06


# Operand kinds
_NONE = 0
_INT8 = 1
_INT16 = 2
_INT32 = 4
_INT64 = 8
_TOKEN = -4
_SWITCH = -1


def _build_one_byte_table() -> dict[int, int]:
    table: dict[int, int] = {}

    def span(first: int, last: int, kind: int) -> None:
        for op in range(first, last + 1):
            table[op] = kind

    span(0x00, 0x0D, _NONE)      # nop .. stloc.3
    span(0x0E, 0x13, _INT8)      # ldarg.s .. stloc.s
    span(0x14, 0x1E, _NONE)      # ldnull, ldc.i4.m1 .. ldc.i4.8
    table[0x1F] = _INT8          # ldc.i4.s
    table[0x20] = _INT32         # ldc.i4
    table[0x21] = _INT64         # ldc.i8
    table[0x22] = _INT32         # ldc.r4
    table[0x23] = _INT64         # ldc.r8
    span(0x25, 0x26, _NONE)      # dup, pop
    span(0x27, 0x29, _TOKEN)     # jmp, call, calli
    table[0x2A] = _NONE          # ret
    span(0x2B, 0x37, _INT8)      # short branches
    span(0x38, 0x44, _INT32)     # long branches
    table[0x45] = _SWITCH
    span(0x46, 0x6E, _NONE)      # ldind/stind/arithmetic/conv
    span(0x6F, 0x75, _TOKEN)     # callvirt .. isinst
    table[0x76] = _NONE          # conv.r.un
    table[0x79] = _TOKEN         # unbox
    table[0x7A] = _NONE          # throw
    span(0x7B, 0x81, _TOKEN)     # ldfld .. stobj
    span(0x82, 0x8B, _NONE)      # conv.ovf.*.un
    span(0x8C, 0x8D, _TOKEN)     # box, newarr
    table[0x8E] = _NONE          # ldlen
    table[0x8F] = _TOKEN         # ldelema
    span(0x90, 0xA2, _NONE)      # ldelem.* / stelem.*
    span(0xA3, 0xA5, _TOKEN)     # ldelem, stelem, unbox.any
    span(0xB3, 0xBA, _NONE)      # conv.ovf.*
    table[0xC2] = _TOKEN         # refanyval
    table[0xC3] = _NONE          # ckfinite
    table[0xC6] = _TOKEN         # mkrefany
    table[0xD0] = _TOKEN         # ldtoken
    span(0xD1, 0xDC, _NONE)      # conv.u2 .. endfinally
    table[0xDD] = _INT32         # leave
    table[0xDE] = _INT8          # leave.s
    span(0xDF, 0xE0, _NONE)      # stind.i, conv.u
    return table


def _build_two_byte_table() -> dict[int, int]:
    table: dict[int, int] = {}
    for op in range(0x00, 0x06):  # arglist, ceq .. clt.un
        table[op] = _NONE
    table[0x06] = _TOKEN         # ldftn
    table[0x07] = _TOKEN         # ldvirtftn
    for op in range(0x09, 0x0F):  # ldarg .. stloc
        table[op] = _INT16
    table[0x0F] = _NONE          # localloc
    table[0x11] = _NONE          # endfilter
    table[0x12] = _INT8          # unaligned.
    table[0x13] = _NONE          # volatile.
    table[0x14] = _NONE          # tail.
    table[0x15] = _TOKEN         # initobj
    table[0x16] = _TOKEN         # constrained.
    table[0x17] = _NONE          # cpblk
    table[0x18] = _NONE          # initblk
    table[0x19] = _INT8          # no.
    table[0x1A] = _NONE          # rethrow
    table[0x1C] = _TOKEN         # sizeof
    table[0x1D] = _NONE          # refanytype
    table[0x1E] = _NONE          # readonly.
    return table


_ONE_BYTE = _build_one_byte_table()
_TWO_BYTE = _build_two_byte_table()


def read_method_body(data: bytes, offset: int = 0) -> bytes:
    """Return the IL code bytes of a tiny or fat method body at ``offset``."""
    if offset >= len(data):
        raise ILFormatError(f"method body offset {offset:#x} out of range")

    first = data[offset]
    if first & 0x03 == 0x02:
        size = first >> 2
        start = offset + 1
    elif first & 0x03 == 0x03:
        if offset + 12 > len(data):
            raise ILFormatError("truncated fat method header")
        flags_and_size, _max_stack, size = struct.unpack_from("<HHI", data, offset)
        header_size = (flags_and_size >> 12) * 4
        if header_size < 12:
            raise ILFormatError(f"bad fat header size {header_size}")
        start = offset + header_size
    else:
        raise ILFormatError(f"unknown method header format {first:#04x}")

    if start + size > len(data):
        raise ILFormatError("method body exceeds available data")
    return bytes(data[start:start + size])


def decode_instructions(
    code: bytes,
    resolve_token: Optional[Callable[[int], Any]] = None,
) -> Iterator[Instruction]:
    """Lazily decode ``code`` into instructions.

    Token operands are passed through ``resolve_token``; when it returns
    ``None`` the raw token is kept.
    """
    pos = 0
    end = len(code)
    while pos < end:
        start = pos
        op = code[pos]
        pos += 1
        if op == 0xFE:
            if pos >= end:
                raise ILFormatError(f"truncated two-byte opcode at {start:#x}")
            second = code[pos]
            pos += 1
            kind = _TWO_BYTE.get(second)
            opcode = 0xFE00 | second
        else:
            kind = _ONE_BYTE.get(op)
            opcode = op
        if kind is None:
            raise ILFormatError(f"invalid opcode {opcode:#x} at {start:#x}")

        operand: Any = None
        if kind == _SWITCH:
            if pos + 4 > end:
                raise ILFormatError(f"truncated switch at {start:#x}")
            (count,) = struct.unpack_from("<I", code, pos)
            pos += 4
            if pos + 4 * count > end:
                raise ILFormatError(f"truncated switch table at {start:#x}")
            operand = list(struct.unpack_from(f"<{count}i", code, pos))
            pos += 4 * count
        elif kind != _NONE:
            size = abs(kind)
            if pos + size > end:
                raise ILFormatError(f"truncated operand at {start:#x}")
            raw = code[pos:pos + size]
            pos += size
            if kind == _TOKEN:
                token = int.from_bytes(raw, "little")
                operand = resolve_token(token) if resolve_token else None
                if operand is None:
                    operand = token
            else:
                operand = int.from_bytes(raw, "little", signed=True)

        yield Instruction(offset=start, opcode=opcode, operand=operand)
