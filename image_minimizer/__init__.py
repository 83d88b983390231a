"""
Image minimizer core package.

Exposes the primitives for sniffing image formats from bytes, running
transform jobs with bounded concurrency, and routing work items through
pluggable compression backends.
"""
