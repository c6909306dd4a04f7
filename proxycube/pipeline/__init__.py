"""Deferred pipeline – pending chain nodes, read planning and execution."""

from proxycube.pipeline.executor import execute_chain
from proxycube.pipeline.nodes import (
    ApplyOp,
    PendingOp,
    ReadOp,
    ReduceOp,
    chain_to_list,
    iter_chain,
)
from proxycube.pipeline.planner import DOWNSAMPLE_MODES, ReadPlan, check_resolution, plan_read

__all__ = [
    "DOWNSAMPLE_MODES",
    "ApplyOp",
    "PendingOp",
    "ReadOp",
    "ReadPlan",
    "ReduceOp",
    "chain_to_list",
    "check_resolution",
    "execute_chain",
    "iter_chain",
    "plan_read",
]
