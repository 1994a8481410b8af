# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Cooperative cancellation. A token is passed down explicitly and checked
between file iterations and between result iterations; it never interrupts
a provider call that is already running.
"""
import threading


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.is_cancelled
