# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""State vector, estimation filter and measurement update strategies"""

from .filter import EstimationFilter, UpdateResult
from .state import FilterState, isb_key
from .strategies import BatchUpdate, SequentialUpdate, UpdateStrategy, make_strategy

__all__ = ['EstimationFilter', 'UpdateResult', 'FilterState', 'isb_key',
           'BatchUpdate', 'SequentialUpdate', 'UpdateStrategy', 'make_strategy']
