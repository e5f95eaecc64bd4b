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

import inspect


def get_qualified_classname(obj):
    t = obj if inspect.isclass(obj) else type(obj)
    return t.__module__ + "." + t.__qualname__


def get_qualified_name(obj, default=None):
    """Qualified name of a class or function, `default` for objects carrying no `__qualname__`."""
    if inspect.isclass(obj):
        return get_qualified_classname(obj)
    module = getattr(obj, "__module__", None)
    qualname = getattr(obj, "__qualname__", None)
    if not isinstance(module, str) or not isinstance(qualname, str):
        return default
    return module + "." + qualname


def describe_types(types):
    if isinstance(types, tuple):
        return " | ".join(get_qualified_classname(t) for t in types)
    return get_qualified_classname(types)
