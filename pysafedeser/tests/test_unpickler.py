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

import copyreg
import io
import os
import pickle
import struct
import sys
import types

import pytest

from pysafedeser import (
    BoundedReader,
    GuardedUnpickler,
    MalformedStream,
    ObjectCountExceeded,
    Policy,
    StreamLimitExceeded,
    TypeDescriptor,
    UnauthorizedType,
)


class Runtime:
    created = 0

    def __new__(cls, *args, **kwargs):
        Runtime.created += 1
        return super().__new__(cls)


class Exploit:
    def __reduce__(self):
        return os.system, ("echo pwned",)


def new_guard(data, policy=None):
    policy = policy or Policy(max_objects=1000, max_bytes=100_000)
    return GuardedUnpickler(BoundedReader(io.BytesIO(data), policy.max_bytes), policy)


@pytest.mark.parametrize("protocol", range(2, pickle.HIGHEST_PROTOCOL + 1))
def test_object_count(protocol):
    guard = new_guard(pickle.dumps([1, 2, 3], protocol=protocol))
    assert guard.decode() == [1, 2, 3]
    # the list plus its three items
    assert guard.object_count == 4


def test_singletons_not_counted():
    guard = new_guard(pickle.dumps((None, True, ()), protocol=2))
    assert guard.decode() == (None, True, ())
    assert guard.object_count == 1


def test_shared_references_counted_once():
    shared = [1]
    guard = new_guard(pickle.dumps([shared, shared], protocol=2))
    result = guard.decode()
    assert result[0] is result[1]
    assert guard.object_count == 3


def test_object_limit_is_inclusive():
    data = pickle.dumps([1, 2, 3], protocol=2)
    assert new_guard(data, Policy(max_objects=4, max_bytes=1000)).decode() == [1, 2, 3]
    with pytest.raises(ObjectCountExceeded, match="Limit is 3") as excinfo:
        new_guard(data, Policy(max_objects=3, max_bytes=1000)).decode()
    assert excinfo.value.limit == 3
    assert excinfo.value.count == 4


def test_on_object_resolved_passes_candidate_through():
    guard = new_guard(b"")
    candidate = object()
    assert guard.on_object_resolved(candidate) is candidate
    assert guard.object_count == 1


def test_on_type_resolved():
    guard = new_guard(b"", Policy(allowed_types={Runtime}))
    assert guard.on_type_resolved(TypeDescriptor(__name__, "Runtime")) is Runtime
    assert guard.on_type_resolved(TypeDescriptor("builtins", "str")) is str
    with pytest.raises(UnauthorizedType, match="builtins.eval"):
        guard.on_type_resolved(TypeDescriptor("builtins", "eval"))


def test_unauthorized_class_never_constructed():
    data = pickle.dumps(Runtime())
    Runtime.created = 0
    with pytest.raises(UnauthorizedType, match="Runtime") as excinfo:
        new_guard(data).decode()
    assert excinfo.value.type_name == f"{__name__}.Runtime"
    assert Runtime.created == 0


@pytest.mark.parametrize("protocol", range(0, pickle.HIGHEST_PROTOCOL + 1))
def test_reduce_payload_rejected(protocol):
    data = pickle.dumps(Exploit(), protocol=protocol)
    with pytest.raises(UnauthorizedType, match="system"):
        new_guard(data).decode()


def test_builtin_function_rejected():
    # GLOBAL builtins.eval, BINUNICODE "1+1", TUPLE1, REDUCE, STOP
    data = b"\x80\x02cbuiltins\neval\nX\x03\x00\x00\x001+1\x85R."
    with pytest.raises(UnauthorizedType, match="eval"):
        new_guard(data).decode()


def test_unloaded_module_is_not_imported():
    data = b"\x80\x02cpysafedeser_never_loaded\nThing\n."
    with pytest.raises(UnauthorizedType, match="pysafedeser_never_loaded.Thing"):
        new_guard(data).decode()
    assert "pysafedeser_never_loaded" not in sys.modules


def test_extension_registry_goes_through_gate():
    code = 0xF0
    copyreg.add_extension(__name__, "Runtime", code)
    try:
        data = pickle.dumps(Runtime, protocol=2)
        # fills the stdlib extension cache
        assert pickle.loads(data) is Runtime
        with pytest.raises(UnauthorizedType, match="Runtime"):
            new_guard(data).decode()
        assert new_guard(data, Policy(allowed_types={Runtime})).decode() is Runtime
    finally:
        copyreg.remove_extension(__name__, "Runtime", code)


def test_decode_only_once():
    guard = new_guard(pickle.dumps(1))
    assert guard.decode() == 1
    with pytest.raises(RuntimeError, match="one stream"):
        guard.decode()


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\xff",
        pickle.dumps([1, 2, 3], protocol=2)[:-3],
        # module is loaded but lacks the attribute
        b"\x80\x02cbuiltins\nno_such_name\n.",
        # persistent id
        b"\x80\x02X\x01\x00\x00\x00aQ.",
        # memo miss
        b"\x80\x02h\x07.",
        # constructors of permitted types failing on their arguments
        b"cfractions\nFraction\n(I1\nI0\ntR.",
        b"cdecimal\nDecimal\n(Vabc\ntR.",
        b"cbuiltins\nbytes\n(I1180591620717411303424\ntR.",
    ],
)
def test_malformed_stream(data):
    with pytest.raises(MalformedStream):
        new_guard(data).decode()


def test_malformed_stream_chains_cause():
    with pytest.raises(MalformedStream) as excinfo:
        new_guard(b"").decode()
    assert isinstance(excinfo.value.__cause__, EOFError)


def test_constructor_error_chained():
    with pytest.raises(MalformedStream) as excinfo:
        new_guard(b"cfractions\nFraction\n(I1\nI0\ntR.").decode()
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)


def test_bytearray_length_checked_before_allocation():
    data = b"\x80\x05\x96" + struct.pack("<Q", 1 << 40) + b"."
    guard = new_guard(data, Policy(max_bytes=1000))
    with pytest.raises(StreamLimitExceeded) as excinfo:
        guard.decode()
    assert excinfo.value.limit == 1000
    assert excinfo.value.consumed > 1 << 40


def test_bytearray_within_limit():
    payload = bytearray(b"abc" * 100)
    data = b"\x80\x05\x96" + struct.pack("<Q", len(payload)) + bytes(payload) + b"."
    assert new_guard(data, Policy(max_bytes=len(data))).decode() == payload
    with pytest.raises(StreamLimitExceeded):
        new_guard(data, Policy(max_bytes=len(data) - 2)).decode()


@pytest.mark.parametrize("size", [10, 100_000])
def test_bytearray_inside_and_outside_frames(size):
    value = bytearray(range(256)) * (size // 256 + 1)
    data = pickle.dumps(value, protocol=5)
    assert new_guard(data, Policy(max_bytes=len(data))).decode() == value


def test_truncated_bytearray():
    data = b"\x80\x05\x96" + struct.pack("<Q", 10) + b"abc"
    with pytest.raises(MalformedStream):
        new_guard(data).decode()


def test_module_getattr_not_called(monkeypatch):
    calls = []
    module = types.ModuleType("pysafedeser_lazy")

    def lazy_getattr(name):
        calls.append(name)
        return Runtime

    module.__getattr__ = lazy_getattr
    monkeypatch.setitem(sys.modules, "pysafedeser_lazy", module)
    with pytest.raises(MalformedStream):
        new_guard(b"\x80\x02cpysafedeser_lazy\nRuntime\n.", Policy(allowed_types={Runtime})).decode()
    assert calls == []
