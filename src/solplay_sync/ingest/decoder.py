"""
Instruction decoder for the SolPlay program.

Maps a raw program instruction to a named operation using the first data
byte as the opcode, and picks out the accounts that operation touches by
their fixed position in the instruction's account list.

The opcode table and account positions are a versioned contract with the
on-chain program. They change in lockstep with the program's instruction
order and ``#[derive(Accounts)]`` struct layouts.

Decoding is pure: no I/O, no state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from solplay_sync.ingest.errors import InstructionDecodeError


class Operation(str, Enum):
    INITIALIZE = "initialize"
    CREATE_VIDEO = "createVideo"
    UPDATE_VIDEO = "updateVideo"
    APPROVE_DELEGATE = "approveDelegate"
    SETTLE_SESSION = "settleSession"
    PAY_FOR_CHUNK = "payForChunk"
    REVOKE_DELEGATE = "revokeDelegate"
    CLOSE_SESSION = "closeSession"
    UNKNOWN = "unknown"


OPCODES: dict[int, Operation] = {
    0: Operation.INITIALIZE,
    1: Operation.CREATE_VIDEO,
    2: Operation.UPDATE_VIDEO,
    3: Operation.APPROVE_DELEGATE,
    4: Operation.SETTLE_SESSION,
    5: Operation.PAY_FOR_CHUNK,
    6: Operation.REVOKE_DELEGATE,
    7: Operation.CLOSE_SESSION,
}

# Role -> index into the instruction's account list.
ACCOUNT_LAYOUTS: dict[Operation, dict[str, int]] = {
    Operation.INITIALIZE: {"platform": 0, "authority": 2},
    Operation.CREATE_VIDEO: {"video": 0, "creator": 3},
    Operation.UPDATE_VIDEO: {"video": 0, "creator": 2},
    Operation.APPROVE_DELEGATE: {"session": 0, "video": 1, "viewer": 7},
    Operation.SETTLE_SESSION: {"session": 0, "video": 1, "viewer": 7},
    Operation.PAY_FOR_CHUNK: {"session": 0, "video": 1, "viewer": 7},
    Operation.REVOKE_DELEGATE: {"session": 0, "video": 1, "viewer": 4},
    Operation.CLOSE_SESSION: {"session": 0, "video": 1, "viewer": 2},
}


@dataclass(slots=True, frozen=True)
class DecodedInstruction:
    """
    A recognised program instruction.

    Attributes:
        operation: Named operation; ``Operation.UNKNOWN`` for opcodes this
            build does not know about.
        accounts: Role name -> account address, per ``ACCOUNT_LAYOUTS``.
        opcode: The raw opcode byte, or None for empty instruction data.
        block_time: Block time of the containing transaction, if known.
    """

    operation: Operation
    accounts: dict[str, str] = field(default_factory=dict)
    opcode: int | None = None
    block_time: int | None = None

    @property
    def is_known(self) -> bool:
        return self.operation is not Operation.UNKNOWN


def decode_instruction(
    data: bytes,
    accounts: Sequence[str],
    block_time: int | None = None,
) -> DecodedInstruction:
    """
    Decode one instruction addressed to the SolPlay program.

    Args:
        data: Raw instruction data; byte 0 is the opcode.
        accounts: Ordered account addresses passed to the instruction.
        block_time: Block time of the transaction, carried through.

    Returns:
        The decoded instruction. Unknown opcodes decode to
        ``Operation.UNKNOWN`` with no accounts.

    Raises:
        InstructionDecodeError: The opcode is known but the account list is
            too short for its layout.
    """
    if not data:
        return DecodedInstruction(Operation.UNKNOWN, block_time=block_time)

    opcode = data[0]
    operation = OPCODES.get(opcode, Operation.UNKNOWN)
    if operation is Operation.UNKNOWN:
        return DecodedInstruction(operation, opcode=opcode, block_time=block_time)

    layout = ACCOUNT_LAYOUTS[operation]
    needed = max(layout.values()) + 1
    if len(accounts) < needed:
        raise InstructionDecodeError(
            f"{operation.value} expects at least {needed} accounts, got {len(accounts)}"
        )

    return DecodedInstruction(
        operation=operation,
        accounts={role: accounts[index] for role, index in layout.items()},
        opcode=opcode,
        block_time=block_time,
    )
