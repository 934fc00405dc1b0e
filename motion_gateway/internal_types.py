# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, Set, Tuple, Type, Callable, Awaitable,
    Iterable, Iterator, Mapping, MutableMapping, Sequence, Generic, TypeVar,
    AsyncIterable, AsyncIterator, AsyncContextManager, TYPE_CHECKING,
  )
from types import TracebackType
from typing_extensions import Self

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type hint for a value that can be serialized to JSON"""

JsonableDict = Dict[str, Jsonable]
"""A type hint for a JSON object"""

HostAndPort = Tuple[str, int]
"""An (ip_address, port) tuple as used by socket addresses"""

Unsubscribe = Callable[[], None]
"""A handle returned by a subscribe method; calling it removes the subscription."""
