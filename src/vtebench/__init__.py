"""vtebench - A/B rendering benchmarks for VTE revisions.

Builds two revisions of the VTE tree side by side, times the test
application rendering a grapheme-heavy workload under a virtual
display, and summarizes the samples per revision.
"""

__version__ = "0.1.0"
