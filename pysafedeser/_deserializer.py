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

import io
import logging
from typing import Union

from pysafedeser._unpickler import GuardedUnpickler
from pysafedeser.error import MalformedStream, SecurityViolation, TypeMismatch
from pysafedeser.policy import Policy
from pysafedeser.stream import BoundedReader

logger = logging.getLogger(__name__)


class SafeDeserializer:
    """
    Safe replacement for ``pickle.load`` on untrusted input.

    A deserializer owns the guard for exactly one stream: a
    :class:`BoundedReader` over the source, and a :class:`GuardedUnpickler`
    over that reader. Every decode needs its own deserializer because both
    counters accumulate over one stream traversal; deserializers share no
    state and can be used from different threads independently.

    Args:
        policy: Allowlist and ceilings enforced for the decode.
        source: The untrusted binary source, any object with ``read(size)``.

    Example:
        >>> policy = Policy(allowed_types={Point}, max_objects=10, max_bytes=1000)
        >>> with open("point.pkl", "rb") as f:
        ...     point = SafeDeserializer(policy, f).read_object(Point)
    """

    __slots__ = ("policy", "_reader", "_unpickler", "_used")

    def __init__(self, policy: Policy, source):
        self.policy = policy
        self._reader = BoundedReader(source, policy.max_bytes)
        self._unpickler = GuardedUnpickler(self._reader, policy)
        self._used = False

    @property
    def bytes_read(self) -> int:
        return self._reader.bytes_read

    @property
    def object_count(self) -> int:
        return self._unpickler.object_count

    def read_object(self, expected_type: Union[type, tuple] = None):
        """
        Decode the object stored in the source.

        Args:
            expected_type: Optional type, or tuple of types, the decoded root
                object must be an instance of.

        Returns:
            The decoded object.

        Raises:
            StreamLimitExceeded: More than ``policy.max_bytes`` bytes were read.
            ObjectCountExceeded: More than ``policy.max_objects`` objects were built.
            UnauthorizedType: The stream referenced a type the policy does not permit.
            MalformedStream: The bytes are not a valid pickle stream.
            TypeMismatch: The root object is not an instance of ``expected_type``.
        """
        if self._used:
            raise RuntimeError("SafeDeserializer can only read one object, create a new one for every stream.")
        self._used = True
        try:
            obj = self._unpickler.decode()
        except SecurityViolation as e:
            logger.warning("Rejected untrusted stream after %d bytes and %d objects: %s", self.bytes_read, self.object_count, e)
            raise
        except MalformedStream as e:
            logger.info("Malformed stream after %d bytes: %s", self.bytes_read, e)
            raise
        if expected_type is not None and not isinstance(obj, expected_type):
            raise TypeMismatch(expected_type, type(obj))
        logger.debug("Deserialized %s from %d bytes and %d objects", type(obj).__name__, self.bytes_read, self.object_count)
        return obj


def load(source, policy: Policy = None, *, expected_type: Union[type, tuple] = None):
    """
    Safely decode one object from a binary source.

    Args:
        source: The untrusted binary source, any object with ``read(size)``.
        policy: Limits to enforce, defaults to ``Policy()`` which permits only
            the built-in array, text and numeric types.
        expected_type: Optional type, or tuple of types, the result must be an
            instance of.
    """
    if policy is None:
        policy = Policy()
    return SafeDeserializer(policy, source).read_object(expected_type)


def loads(data, policy: Policy = None, *, expected_type: Union[type, tuple] = None):
    """
    Safely decode one object from a bytes-like object, see `load`.
    """
    return load(io.BytesIO(data), policy, expected_type=expected_type)
