"""Run-scoped crawl state and page orchestration."""
