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

from pysafedeser._deserializer import (
    SafeDeserializer,
    load,
    loads,
)
from pysafedeser._unpickler import GuardedUnpickler, TypeDescriptor
from pysafedeser.error import (  # noqa: F401 # pylint: disable=unused-import
    SafeDeserializationError,
    SecurityViolation,
    StreamLimitExceeded,
    ObjectCountExceeded,
    UnauthorizedType,
    MalformedStream,
    TypeMismatch,
)
from pysafedeser.policy import (  # noqa: F401 # pylint: disable=unused-import
    Policy,
    DEFAULT_MAX_OBJECTS,
    DEFAULT_MAX_BYTES,
    is_permitted,
)
from pysafedeser.stream import BoundedReader

__version__ = "0.1.0.dev0"

__all__ = [
    # Core classes
    "SafeDeserializer",
    "GuardedUnpickler",
    "BoundedReader",
    "TypeDescriptor",
    "Policy",
    # Entry points
    "load",
    "loads",
    "is_permitted",
    "DEFAULT_MAX_OBJECTS",
    "DEFAULT_MAX_BYTES",
    # Errors
    "SafeDeserializationError",
    "SecurityViolation",
    "StreamLimitExceeded",
    "ObjectCountExceeded",
    "UnauthorizedType",
    "MalformedStream",
    "TypeMismatch",
    # Version
    "__version__",
]
