"""Release-notes job: git range -> tickets -> categories -> details -> summaries -> markdown."""
