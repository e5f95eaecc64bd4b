# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.

import array
import codecs
import copyreg
import decimal
import fractions
from dataclasses import dataclass, field
from typing import FrozenSet

try:
    import numpy as np
except ImportError:
    np = None


DEFAULT_MAX_OBJECTS = 10_000
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class Policy:
    """Limits applied to one decode of an untrusted pickle stream.

    A policy carries three independent limits:

    - ``allowed_types``: the classes a stream may instantiate on top of the
      built-in array, text and numeric types that are always permitted
      (see :func:`is_permitted`).
    - ``max_objects``: the largest number of objects a stream may materialize.
    - ``max_bytes``: the largest number of bytes that may be consumed from the
      source.

    Both ceilings are inclusive: a stream of exactly ``max_bytes`` bytes which
    builds exactly ``max_objects`` objects is accepted, one more of either is
    rejected.

    Policies are immutable and hold no per-decode state, so one policy can be
    shared by any number of concurrent decodes.

    Example:
        >>> policy = Policy(allowed_types={Point}, max_objects=10, max_bytes=1000)
        >>> point = pysafedeser.loads(data, policy, expected_type=Point)
    """

    allowed_types: FrozenSet[type] = field(default_factory=frozenset)
    max_objects: int = DEFAULT_MAX_OBJECTS
    max_bytes: int = DEFAULT_MAX_BYTES

    def __post_init__(self):
        allowed_types = frozenset(self.allowed_types)
        for cls in allowed_types:
            if not isinstance(cls, type):
                raise TypeError(f"allowed_types must only contain classes, got {cls!r}")
        object.__setattr__(self, "allowed_types", allowed_types)
        _check_ceiling("max_objects", self.max_objects)
        _check_ceiling("max_bytes", self.max_bytes)


def _check_ceiling(name, value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


ARRAY_TYPES = frozenset({list, tuple, dict, set, frozenset, bytes, bytearray, array.array})
TEXT_TYPES = frozenset({str})
NUMERIC_TYPES = frozenset({int, float, complex, bool, decimal.Decimal, fractions.Fraction})

# Non-type callables pickle needs to rebuild the always-permitted types:
# `copyreg._reconstructor`/`object` for protocols 0 and 1, `codecs.encode` for
# bytes below protocol 3, and the array/ndarray/numpy scalar reconstructors.
_RECONSTRUCTORS = [copyreg._reconstructor, object, codecs.encode, array._array_reconstructor]
if np is not None:
    _RECONSTRUCTORS.append(np.empty(0).__reduce__()[0])
    _RECONSTRUCTORS.append(np.zeros(1).__reduce_ex__(5)[0])
    _RECONSTRUCTORS.append(np.int8(0).__reduce__()[0])


def _is_numpy_type(cls):
    return np is not None and cls.__module__.split(".")[0] == "numpy"


def is_array_type(cls) -> bool:
    if cls in ARRAY_TYPES:
        return True
    if _is_numpy_type(cls):
        return cls is np.ndarray or issubclass(cls, np.dtype)
    return False


def is_text_type(cls) -> bool:
    return cls in TEXT_TYPES


def is_numeric_type(cls) -> bool:
    if cls in NUMERIC_TYPES:
        return True
    if _is_numpy_type(cls):
        return issubclass(cls, (np.number, np.bool_))
    return False


def is_reconstructor(obj) -> bool:
    return any(obj is reconstructor for reconstructor in _RECONSTRUCTORS)


def is_permitted(resolved, allowed_types) -> bool:
    """Whether a resolved type reference may be used by a stream.

    ``resolved`` is whatever a type descriptor in the stream resolved to,
    usually a class but possibly a function. Classes are permitted when they
    are an array type, the text type, a numeric wrapper type or a member of
    ``allowed_types``; built-in types are matched exactly, so their
    subclasses need to be allowlisted explicitly. Functions are only permitted
    when they are one of the fixed reconstructors pickle uses for the built-in
    categories.
    """
    if is_reconstructor(resolved):
        return True
    if not isinstance(resolved, type):
        return False
    return is_array_type(resolved) or is_text_type(resolved) or is_numeric_type(resolved) or resolved in allowed_types
