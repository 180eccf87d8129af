"""
The `seedhunt` package runs a simulation executable under many random seeds,
catches the seeds that make it fail, and turns their logs into reports.

The execution engine lives in `seedhunt.seeds`, `seedhunt.scheduler`,
`seedhunt.execution` and `seedhunt.triage`; reporting lives in
`seedhunt.report` and `seedhunt.gitlab`.
"""

__version__ = "0.3.0"
