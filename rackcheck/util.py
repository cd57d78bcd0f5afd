# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0

from typing import Any, Callable

from ducktape.utils.util import wait_until


def wait_until_result(condition: Callable[[], Any], *args: Any,
                      **kwargs: Any) -> Any:
    """
    ducktape's wait_until, except that the value produced by the condition
    is handed back to the caller once it passes.

    A condition may return a tuple: its head decides whether the wait is
    over and the remaining elements are returned, unwrapped when there is
    only one of them:

       (cond,)          -> None
       (cond,e1)        -> e1
       (cond,e1,e2,...) -> [e1,e2,...]
    """
    res = None

    def wrapped_condition():
        nonlocal res
        cond = condition()
        if isinstance(cond, tuple):
            head, *tail = cond
            if not tail:
                res = None
            elif len(tail) == 1:
                res = tail[0]
            else:
                res = tail
            return head
        res = cond
        return res

    wait_until(wrapped_condition, *args, **kwargs)
    return res


def topic_is_ready(description, spec) -> bool:
    """
    A freshly created topic is ready once metadata lists every partition
    with a leader and a full replica set.
    """
    if description is None:
        return False
    if len(description.partitions) != spec.partition_count:
        return False
    return all(p.leader >= 0 and len(p.replicas) == spec.replication_factor
               for p in description.partitions)
