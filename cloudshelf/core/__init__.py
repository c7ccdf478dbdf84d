"""
Core application service.

The `CloudCacheService` is created once per process and owns every piece of
shared cache state; front ends call into it rather than into the layers below.
"""
