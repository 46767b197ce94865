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

"""GNSS observation processing.

Atmospheric corrections, cycle slip detection, observation screening, the
measurement model and solution quality checks.
"""

from .atmosphere import AtmosphericModel, dual_frequency_pair
from .cycle_slip import CycleSlipDetector, SlipHistory
from .measurement_model import MeasurementModel, MeasurementRow, MeasurementSet
from .preprocessing import AdmittedObservation, ObservationPreprocessor, PreprocessResult
from .quality import QualityAssessor, compute_dop

__all__ = ['AtmosphericModel', 'dual_frequency_pair', 'CycleSlipDetector', 'SlipHistory',
           'MeasurementModel', 'MeasurementRow', 'MeasurementSet', 'AdmittedObservation',
           'ObservationPreprocessor', 'PreprocessResult', 'QualityAssessor', 'compute_dop']
