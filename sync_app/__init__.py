"""
Marathon Tracker - Sync Application

The SYNC APP is responsible for:
1. Keeping a local replica of Intervals.icu activities, intervals, wellness and events
2. Fetching only what the local store is missing, in rate-limited batches
3. Exporting/importing the local store as versioned (optionally gzipped) snapshots
4. Bootstrapping fresh installs from a published snapshot
5. Providing CLI and API access to the replica

Components:
- IntervalsClient: Translates Intervals.icu REST calls into typed results/errors
- BatchFetcher: Fetches per-activity sub-resources in delayed, bounded batches
- DataSynchronizer: Database-first reads and incremental/full merges
- Snapshot codec / BootstrapImporter: Whole-store exchange
- SchemaMigrator / AnalysisLoader: Coach analysis schema upkeep
- API Server: REST API over the replica
"""

__version__ = "1.0.0"
__author__ = "Marathon Tracker"
