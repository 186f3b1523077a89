"""
HTTP glue for the licensing service: headers, version guard, request handling.
"""
