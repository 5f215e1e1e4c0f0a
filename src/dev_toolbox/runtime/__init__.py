"""Shared runtime for toolbox jobs.

Three pieces every tool builds on:

- :mod:`.cache`: content-addressable, namespaced, TTL-aware on-disk cache;
- :mod:`.executor`: bounded-concurrency runner for batches of async calls;
- :mod:`.pipeline`: ordered stages with an on-disk checkpoint for resume.
"""
