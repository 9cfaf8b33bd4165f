"""
Type aliases shared by the cosync event loop.

A *raw task* is any coroutine (native ``async def`` or a ``types.coroutine``
generator) that yields :class:`~cosync.core.event_loop.commands.Command`
objects to the loop and receives the loop's replies.
"""

from typing import Any, Coroutine, Generator, Tuple, TypeVar, Union

from typing_extensions import TypeAlias

_YieldT = TypeVar("_YieldT")
_SendT = TypeVar("_SendT")
_ReturnT = TypeVar("_ReturnT")
_ExcT = TypeVar("_ExcT", bound=BaseException)

Time: TypeAlias = float
DeltaTime: TypeAlias = float

RawTask: TypeAlias = Union[
    Coroutine[_YieldT, _SendT, _ReturnT],
    Generator[_YieldT, _SendT, _ReturnT],
]

# (task, value to send, exception to throw)
RawTaskPacket: TypeAlias = Tuple[
    RawTask[_YieldT, _SendT, _ReturnT],
    Union[_SendT, None],
    Union[_ExcT, None],
]

TaskHandlePacket: TypeAlias = Tuple[
    RawTask[_YieldT, Any, _ReturnT],
    Union[_SendT, None],
    Union[_ExcT, None],
]

__all__ = [
    "DeltaTime",
    "RawTask",
    "RawTaskPacket",
    "TaskHandlePacket",
    "Time",
]
