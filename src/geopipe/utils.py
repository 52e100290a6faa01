"""
utils.py

Small helpers shared across geopipe.

- `safe_log_exception(msg, exc, **ctx)` : logs exceptions robustly
- `as_float` / `as_int` / `as_bool` : strict parameter coercion
  used while building operations from configuration
"""
from typing import Any
import math
import numbers
import sys
import logging

import numpy as np

from geopipe.errors import InvalidOperationParametersError

logger = logging.getLogger(__name__)


def safe_log_exception(msg: str, exc: Exception, **ctx: Any) -> None:
	"""Log an exception robustly.

	Attempts to call `logger.exception`. If logging fails for any reason,
	falls back to writing a compact message to `sys.stderr`.
	"""
	try:
		if ctx:
			ctx_s = ' | '.join(f"{k}={v!r}" for k, v in ctx.items())
			logger.exception('%s | %s | %s', msg, exc, ctx_s)
		else:
			logger.exception('%s | %s', msg, exc)
	except Exception:
		try:
			sys.stderr.write(f'LOGGING FAILURE: {msg} {exc}\n')
		except Exception:
			pass


def as_float(name: str, value: Any) -> float:
	"""Return `value` as a finite float or raise InvalidOperationParametersError.

	Booleans are rejected even though they are ints in Python.
	"""
	if isinstance(value, bool) or not isinstance(value, numbers.Real):
		raise InvalidOperationParametersError(f'{name} must be a number, got {value!r}')
	out = float(value)
	if not math.isfinite(out):
		raise InvalidOperationParametersError(f'{name} must be finite, got {value!r}')
	return out


def as_int(name: str, value: Any) -> int:
	if isinstance(value, bool) or not isinstance(value, numbers.Integral):
		raise InvalidOperationParametersError(f'{name} must be an integer, got {value!r}')
	return int(value)


def as_bool(name: str, value: Any) -> bool:
	if not isinstance(value, (bool, np.bool_)):
		raise InvalidOperationParametersError(f'{name} must be true or false, got {value!r}')
	return bool(value)
