"""Per-invocation context holding the cloud control-plane clients.

A fresh :class:`InvocationContext` is built for every backup run or launch
event and handed to each component.  Nothing here is module-level, so two
invocations never share clients and tests can pass substitutes directly::

    ctx = InvocationContext(autoscaling=fake_asg, ec2=fake_ec2)

Blocking SDK calls run on the context's own thread pool.  The invocation
shuts it down when it ends; ``shutdown(wait=False)`` leaves calls that are
still running behind instead of waiting for them.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from functools import cached_property
from typing import Any

import boto3


class InvocationContext:
    """Lazily-created boto3 clients scoped to one invocation."""

    def __init__(
        self,
        region: str | None = None,
        *,
        autoscaling: Any = None,
        ec2: Any = None,
        s3: Any = None,
        route53: Any = None,
    ) -> None:
        self.region = region if region is not None else os.environ.get("AWS_REGION")
        # Substitutes win over lazily-built clients.
        for name, client in (
            ("autoscaling", autoscaling),
            ("ec2", ec2),
            ("s3", s3),
            ("route53", route53),
        ):
            if client is not None:
                self.__dict__[name] = client

    @cached_property
    def autoscaling(self) -> Any:
        return boto3.client("autoscaling", region_name=self.region)

    @cached_property
    def ec2(self) -> Any:
        return boto3.client("ec2", region_name=self.region)

    @cached_property
    def s3(self) -> Any:
        return boto3.client("s3", region_name=self.region)

    @cached_property
    def route53(self) -> Any:
        return boto3.client("route53", region_name=self.region)

    @cached_property
    def executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(thread_name_prefix="spotkeeper")

    def shutdown(self, wait: bool = True) -> None:
        """Release the worker threads; queued calls are dropped."""
        executor = self.__dict__.pop("executor", None)
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)
