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

"""Tabular logs of per-epoch results.

Each epoch becomes one flat record. Epochs without a solution keep their row
with the reason filled in and the solution columns empty, so a log always has
one line per processed epoch. Files are CSV or JSON lines, chosen by suffix.
"""

import json
from pathlib import Path
from typing import Iterable, List, Union

import numpy as np
import pandas as pd

from ..core.data_structures import NoSolution, Solution
from ..core.time import gpst2weektow

COLUMNS = [
    'time', 'week', 'tow', 'status', 'integrity', 'filter_status', 'reason',
    'x', 'y', 'z', 'vx', 'vy', 'vz', 'lat_deg', 'lon_deg', 'height',
    'clock_bias', 'clock_drift', 'sd_e', 'sd_n', 'sd_u',
    'gdop', 'pdop', 'hdop', 'vdop', 'tdop',
    'num_sats', 'satellites_used', 'satellites_excluded', 'rejected_signals',
    'ratio', 'num_fixed', 'chi_square', 'dof',
]

_LIST_SEP = ';'


def solution_to_record(result: Union[Solution, NoSolution]) -> dict:
    """Flatten one epoch result into a row keyed by :data:`COLUMNS`"""
    record = dict.fromkeys(COLUMNS)
    week, tow = gpst2weektow(result.time)
    record.update(time=result.time, week=week, tow=tow)

    if isinstance(result, NoSolution):
        record['status'] = 'NoSolution'
        record['reason'] = result.reason.value
        if result.predicted_position is not None:
            record['x'], record['y'], record['z'] = result.predicted_position.tolist()
        return record

    llh = result.get_llh()
    sd = result.position_std_enu()
    record.update(
        status=result.fix_status.value,
        integrity=result.integrity.value,
        filter_status=result.filter_status.value,
        lat_deg=float(np.degrees(llh[0])),
        lon_deg=float(np.degrees(llh[1])),
        height=float(llh[2]),
        clock_bias=result.clock_bias,
        clock_drift=result.clock_drift,
        sd_e=float(sd[0]), sd_n=float(sd[1]), sd_u=float(sd[2]),
        num_sats=len(result.satellites_used),
        satellites_used=_LIST_SEP.join(result.satellites_used),
        satellites_excluded=_LIST_SEP.join(result.satellites_excluded),
        rejected_signals=_LIST_SEP.join(str(s) for s in result.rejected_signals),
        ratio=result.ratio,
        num_fixed=result.num_fixed,
        chi_square=result.chi_square,
        dof=result.dof,
    )
    record['x'], record['y'], record['z'] = result.position.tolist()
    record['vx'], record['vy'], record['vz'] = result.velocity.tolist()
    record.update(result.dop.to_dict())
    return record


def solutions_to_dataframe(results: Iterable[Union[Solution, NoSolution]]) -> pd.DataFrame:
    """One row per epoch, ordered as given"""
    return pd.DataFrame([solution_to_record(r) for r in results], columns=COLUMNS)


def write_solutions(path: Union[str, Path],
                    results: Iterable[Union[Solution, NoSolution]]) -> Path:
    """
    Write epoch results to ``path``

    ``.csv`` writes comma separated values; ``.json`` and ``.jsonl`` write one
    JSON object per line.

    Returns
    -------
    Path
        The written file
    """
    path = Path(path)
    df = solutions_to_dataframe(results)
    suffix = path.suffix.lower()
    if suffix == '.csv':
        df.to_csv(path, index=False)
    elif suffix in ('.json', '.jsonl'):
        with path.open('w', encoding='utf-8') as fh:
            for record in df.to_dict(orient='records'):
                fh.write(json.dumps(_plain(record)) + '\n')
    else:
        raise ValueError(f"unsupported solution log format: {path.suffix!r}")
    return path


def read_solutions(path: Union[str, Path]) -> pd.DataFrame:
    """Read a log written by :func:`write_solutions`"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    suffix = path.suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(path, keep_default_na=True,
                         dtype={'satellites_used': str, 'satellites_excluded': str,
                                'rejected_signals': str})
    elif suffix in ('.json', '.jsonl'):
        df = pd.read_json(path, lines=True)
    else:
        raise ValueError(f"unsupported solution log format: {path.suffix!r}")
    return df.reindex(columns=COLUMNS)


def satellites_of(cell) -> List[str]:
    """Split a ``satellites_used``, ``satellites_excluded`` or ``rejected_signals`` cell"""
    if cell is None or (isinstance(cell, float) and np.isnan(cell)) or cell == '':
        return []
    return str(cell).split(_LIST_SEP)


def _plain(record: dict) -> dict:
    out = {}
    for key, value in record.items():
        if isinstance(value, np.generic):
            value = value.item()
        if isinstance(value, float) and (np.isnan(value) or np.isinf(value)):
            value = None
        out[key] = value
    return out
