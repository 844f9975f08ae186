"""
Request processing core: decoding, the stage pipeline, the per-request
lifecycle and the dispatcher that bounds concurrency.
"""
