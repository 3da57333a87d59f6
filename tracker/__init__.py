"""Progress tracker backend: indicators, due dates and progress reports."""
