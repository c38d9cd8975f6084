"""
Pytest fixtures for the ClusterTransport test suite.

- http_mocking: streamed mock responses and a fake multi-node cluster
"""
