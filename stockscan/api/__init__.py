"""HTTP surface for jobs and scheduled jobs."""
