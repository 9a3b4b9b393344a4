# Scoring engines: indicators, optimizer, patterns, trend and signal orchestration
