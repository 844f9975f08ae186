"""
visionpool: a bounded, failure-isolated image processing service.

Requests flow through the Dispatcher (admission), the ImageDecoder, the
ProcessingPipeline running on a leased NativeContext, and come back as a
single RequestOutcome.
"""

__version__ = "1.0.0"
