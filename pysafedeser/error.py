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

from pysafedeser.type_util import describe_types, get_qualified_classname


class SafeDeserializationError(Exception):
    pass


class SecurityViolation(SafeDeserializationError):
    """Raised when a stream tries to break one of the policy limits."""


class StreamLimitExceeded(SecurityViolation):
    def __init__(self, limit: int, consumed: int):
        super().__init__(f"Security violation: attempt to deserialize too many bytes from stream. Limit is {limit}")
        self.limit = limit
        self.consumed = consumed


class ObjectCountExceeded(SecurityViolation):
    def __init__(self, limit: int, count: int):
        super().__init__(f"Security violation: attempt to deserialize too many objects from stream. Limit is {limit}")
        self.limit = limit
        self.count = count


class UnauthorizedType(SecurityViolation):
    def __init__(self, type_name: str):
        super().__init__(f"Security violation: attempt to deserialize unauthorized {type_name}")
        self.type_name = type_name


class MalformedStream(SafeDeserializationError):
    pass


class TypeMismatch(SafeDeserializationError):
    def __init__(self, expected, actual: type):
        super().__init__(f"Deserialized object of type {get_qualified_classname(actual)} is not an instance of {describe_types(expected)}")
        self.expected = expected
        self.actual = actual
