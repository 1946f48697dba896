"""
Browser connection layer for tabquery.

Attaches to running Chrome/Edge instances over the DevTools protocol with
Playwright and provides:
- Debugging port resolution and endpoint probing
- Tab listing, selection, navigation and closing
- DOM queries against the selected tab
- Video pause/resume/fullscreen helpers
"""
