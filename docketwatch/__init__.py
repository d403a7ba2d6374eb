"""DocketWatch: FCC ECFS docket monitoring with AI summaries and email digests."""
