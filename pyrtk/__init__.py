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

"""
pyrtk - per-epoch GNSS position/velocity/time and RTK estimation

Satellite states, atmospheric corrections, observation screening, a sequential
estimation filter, integer ambiguity resolution and solution integrity checks,
driven one epoch at a time by :class:`~pyrtk.navigation.NavigationSession`.
"""

__version__ = "0.1.0"
__author__ = "PyINS Development Team"
__title__ = "pyrtk"
__description__ = "Per-epoch GNSS PVT and RTK estimation"

from . import logger
from .core import *
from .coordinate import *
from .satellite import *
from .navigation import *
