import requests

from riresume.core import job_fetcher

PAGE = """
<html>
  <head>
    <title>Careers page</title>
    <meta property="og:title" content="Backend Engineer" />
    <meta property="og:site_name" content="Acme" />
    <script>var tracking = true;</script>
  </head>
  <body>
    <nav>Home | Jobs</nav>
    <h1>Backend Engineer</h1>
    <p>Build APIs in Python.</p>
    <footer>Copyright</footer>
  </body>
</html>
"""


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_fetch_job_posting_reads_meta_and_visible_text(monkeypatch) -> None:
    monkeypatch.setattr(job_fetcher.requests, "get", lambda url, **kwargs: FakeResponse(PAGE))

    posting = job_fetcher.fetch_job_posting("https://jobs.example.com/123", timeout_sec=5)

    assert posting.title == "Backend Engineer"
    assert posting.company == "Acme"
    assert posting.url == "https://jobs.example.com/123"
    assert "Build APIs in Python." in posting.description
    assert "tracking" not in posting.description
    assert "Home | Jobs" not in posting.description


def test_company_falls_back_to_host(monkeypatch) -> None:
    page = "<html><head><title>Data Analyst</title></head><body>SQL</body></html>"
    monkeypatch.setattr(job_fetcher.requests, "get", lambda url, **kwargs: FakeResponse(page))

    posting = job_fetcher.fetch_job_posting("https://www.initech.com/jobs/9", timeout_sec=5)

    assert posting.title == "Data Analyst"
    assert posting.company == "initech.com"


def test_failed_download_returns_nothing(monkeypatch) -> None:
    monkeypatch.setattr(job_fetcher.requests, "get", lambda url, **kwargs: FakeResponse("", status_code=503))

    assert job_fetcher.fetch_job_posting("https://jobs.example.com/x", timeout_sec=5) is None
    assert job_fetcher.fetch_job_text("https://jobs.example.com/x", timeout_sec=5) == ""
