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

import _compat_pickle
import copyreg
import functools
import inspect
import pickle
import struct
import sys
from typing import NamedTuple

from pysafedeser.error import (
    MalformedStream,
    ObjectCountExceeded,
    SafeDeserializationError,
    StreamLimitExceeded,
    UnauthorizedType,
)
from pysafedeser.policy import Policy, is_permitted
from pysafedeser.stream import BoundedReader
from pysafedeser.type_util import get_qualified_name


class TypeDescriptor(NamedTuple):
    """A type reference as spelled in the stream."""

    module: str
    name: str


# Opcodes whose handler leaves a newly built object on top of the stack.
# Memo reads (GET/BINGET/LONG_BINGET), DUP and type references are not in here.
_MATERIALIZING_OPCODES = frozenset(
    opcode[0]
    for opcode in (
        pickle.PERSID,
        pickle.BINPERSID,
        pickle.INT,
        pickle.BININT,
        pickle.BININT1,
        pickle.BININT2,
        pickle.LONG,
        pickle.LONG1,
        pickle.LONG4,
        pickle.FLOAT,
        pickle.BINFLOAT,
        pickle.STRING,
        pickle.BINSTRING,
        pickle.SHORT_BINSTRING,
        pickle.UNICODE,
        pickle.BINUNICODE,
        pickle.SHORT_BINUNICODE,
        pickle.BINUNICODE8,
        pickle.BINBYTES,
        pickle.SHORT_BINBYTES,
        pickle.BINBYTES8,
        pickle.BYTEARRAY8,
        pickle.TUPLE,
        pickle.TUPLE1,
        pickle.TUPLE2,
        pickle.TUPLE3,
        pickle.EMPTY_LIST,
        pickle.LIST,
        pickle.EMPTY_DICT,
        pickle.DICT,
        pickle.EMPTY_SET,
        pickle.FROZENSET,
        pickle.REDUCE,
        pickle.NEWOBJ,
        pickle.NEWOBJ_EX,
        pickle.OBJ,
        pickle.INST,
    )
)

_MALFORMED_ERRORS = (
    pickle.UnpicklingError,
    EOFError,
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    AttributeError,
    ArithmeticError,
    MemoryError,
    struct.error,
)


def _is_singleton(obj):
    return obj is None or obj is True or obj is False or (type(obj) is tuple and not obj)


def _counted(load):
    @functools.wraps(load)
    def load_and_count(self):
        load(self)
        obj = self.stack[-1]
        if not _is_singleton(obj):
            self.stack[-1] = self.on_object_resolved(obj)

    return load_and_count


class GuardedUnpickler(pickle._Unpickler):
    """
    Unpickler which gates every type reference and counts every object it builds.

    Built on the pure-Python unpickler of the standard library so that object
    materialization can be observed opcode by opcode. Two hooks are applied
    throughout the walk:

    - ``on_type_resolved`` runs for every type reference before anything is
      instantiated from it and rejects types the policy does not permit.
    - ``on_object_resolved`` runs right after each object is built and fails
      once more than ``policy.max_objects`` objects have been built.

    A guard decodes exactly one stream. After any failure the underlying
    source is left at an undefined position.
    """

    dispatch = {code: _counted(load) if code in _MATERIALIZING_OPCODES else load for code, load in pickle._Unpickler.dispatch.items()}

    def __init__(self, file, policy: Policy, *, encoding="ASCII", errors="strict"):
        super().__init__(file, encoding=encoding, errors=errors)
        self._source = file
        self._policy = policy
        self._object_count = 0
        self._decoded = False

    @property
    def object_count(self) -> int:
        return self._object_count

    def decode(self):
        """Decode the single root object of the stream."""
        if self._decoded:
            raise RuntimeError("GuardedUnpickler can only decode one stream, create a new guard for every decode.")
        self._decoded = True
        try:
            return self.load()
        except SafeDeserializationError:
            raise
        except _MALFORMED_ERRORS as e:
            raise MalformedStream(f"Malformed pickle stream: {e}") from e

    def on_object_resolved(self, candidate):
        self._object_count += 1
        if self._object_count > self._policy.max_objects:
            raise ObjectCountExceeded(self._policy.max_objects, self._object_count)
        return candidate

    def on_type_resolved(self, descriptor: TypeDescriptor):
        resolved = self._resolve(descriptor)
        if not is_permitted(resolved, self._policy.allowed_types):
            raise UnauthorizedType(get_qualified_name(resolved, default=f"{descriptor.module}.{descriptor.name}"))
        return resolved

    def find_class(self, module, name):
        return self.on_type_resolved(TypeDescriptor(module, name))

    def get_extension(self, code):
        # The stdlib caches extension lookups process-wide, which would skip `find_class`.
        key = copyreg._inverted_registry.get(code)
        if not key:
            raise pickle.UnpicklingError(f"unregistered extension code {code}")
        self.append(self.find_class(*key))

    def load_bytearray8(self):
        # The declared length is allocated up front, so it is checked against
        # the bytes the stream may still deliver before anything is allocated.
        (size,) = struct.unpack("<Q", self.read(8))
        available = self._available_bytes()
        if size > available:
            limit = self._policy.max_bytes
            raise StreamLimitExceeded(limit, limit - available + size)
        buffer = bytearray(size)
        self.readinto(buffer)
        if len(buffer) != size:
            raise pickle.UnpicklingError("pickle data was truncated")
        self.append(buffer)

    dispatch[pickle.BYTEARRAY8[0]] = _counted(load_bytearray8)

    def _available_bytes(self):
        buffered = 0
        frame = self._unframer.current_frame
        if frame is not None:
            with frame.getbuffer() as view:
                buffered = view.nbytes - frame.tell()
        if isinstance(self._source, BoundedReader):
            return buffered + self._source.remaining
        return buffered + self._policy.max_bytes

    def _resolve(self, descriptor):
        module, name = descriptor
        sys.audit("pickle.find_class", module, name)
        if self.proto < 3 and self.fix_imports:
            if (module, name) in _compat_pickle.NAME_MAPPING:
                module, name = _compat_pickle.NAME_MAPPING[(module, name)]
            elif module in _compat_pickle.IMPORT_MAPPING:
                module = _compat_pickle.IMPORT_MAPPING[module]
        # Never import on behalf of the stream: only already loaded modules resolve.
        obj = sys.modules.get(module)
        if obj is None:
            raise UnauthorizedType(f"{module}.{name}")
        path = name.split(".") if self.proto >= 4 else [name]
        for attr in path:
            # Static lookup, a module level `__getattr__` may import.
            obj = inspect.getattr_static(obj, attr)
        return obj
