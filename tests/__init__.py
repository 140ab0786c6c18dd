# SPDX-License-Identifier: Apache-2.0
"""
Strand SDK Tests

This package contains the test suite for the generation core: stream
broadcasting, the generation pipeline, the schema codec, the result
cache, and the OpenAI adapter.
"""
