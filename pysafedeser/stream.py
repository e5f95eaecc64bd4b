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

from pysafedeser.error import StreamLimitExceeded


class BoundedReader:
    """
    Binary reader which counts the bytes it delivers and fails past a ceiling.

    Wraps any object exposing ``read(size)``; ``readinto`` and ``readline`` are
    delegated when the source has them and emulated through ``read`` otherwise.
    Once the ceiling has been crossed, every further call raises
    :class:`StreamLimitExceeded` without touching the source again.
    """

    __slots__ = ("_source", "_max_bytes", "_bytes_read", "_exceeded")

    def __init__(self, source, max_bytes: int):
        if not hasattr(source, "read"):
            raise TypeError(f"source must provide read(), got {type(source).__name__}")
        self._source = source
        self._max_bytes = max_bytes
        self._bytes_read = 0
        self._exceeded = False

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    @property
    def remaining(self) -> int:
        """Bytes that can still be delivered before the ceiling is crossed."""
        return self._max_bytes - self._bytes_read

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        data = self._source.read(self._clamp(size))
        if data:
            self._consume(len(data))
        return data

    def readinto(self, buffer) -> int:
        self._check_open()
        readinto = getattr(self._source, "readinto", None)
        view = memoryview(buffer).cast("B")
        view = view[: self._clamp(len(view))]
        if readinto is not None:
            count = readinto(view)
        else:
            data = self._source.read(len(view))
            count = len(data)
            view[:count] = data
        if count:
            self._consume(count)
        return count

    def readline(self, size: int = -1) -> bytes:
        self._check_open()
        readline = getattr(self._source, "readline", None)
        if readline is not None:
            line = readline(self._clamp(size))
            if line:
                self._consume(len(line))
            return line
        line = bytearray()
        while size < 0 or len(line) < size:
            byte = self.read(1)
            if not byte:
                break
            line += byte
            if byte == b"\n":
                break
        return bytes(line)

    def _clamp(self, size):
        # Never ask the source for more than one byte past the ceiling.
        cap = self._max_bytes - self._bytes_read + 1
        if size is None or size < 0 or size > cap:
            return cap
        return size

    def _consume(self, count):
        self._bytes_read += count
        if self._bytes_read > self._max_bytes:
            self._exceeded = True
            raise StreamLimitExceeded(self._max_bytes, self._bytes_read)

    def _check_open(self):
        if self._exceeded:
            raise StreamLimitExceeded(self._max_bytes, self._bytes_read)
