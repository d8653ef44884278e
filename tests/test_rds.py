from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

NOW = datetime(2016, 1, 20, 17, 30, tzinfo=timezone.utc)

LINE1 = "2016-01-20 17:24:33 UTC:10.0.1.12(51962):app@shop:[3287]:LOG:  duration: 12.345 ms  statement: SELECT 1\n"  # noqa
LINE2 = "2016-01-20 17:25:01 UTC:10.0.1.12(51962):app@shop:[3287]:ERROR:  division by zero\n"  # noqa
LINE3 = "2016-01-20 17:25:01 UTC:10.0.1.12(51962):app@shop:[3287]:STATEMENT:  SELECT 1/0\n"  # noqa


def portion(data, marker, pending):
    return dict(LogFileData=data, Marker=marker, AdditionalDataPending=pending)


def denied():
    return ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "not authorized"}},
        "DownloadDBLogFilePortion",
    )


@pytest.fixture
def client(mocker):
    return mocker.Mock(name="rds")


def test_iter_log_file_portions(client):
    from pgrdslog.rds import LogFilePortion, iter_log_file_portions

    client.download_db_log_file_portion.side_effect = [
        portion("a", "1:10", True),
        dict(Marker="1:10", AdditionalDataPending=True),
        portion("b", "1:20", False),
    ]
    portions = list(iter_log_file_portions(client, "shop-db", "error/postgresql.log"))

    assert [
        LogFilePortion("a", "1:10", True),
        LogFilePortion("", "1:10", True),
        LogFilePortion("b", "1:20", False),
    ] == portions
    markers = [
        c.kwargs["Marker"] for c in client.download_db_log_file_portion.call_args_list
    ]
    assert ["0", "1:10", "1:10"] == markers
    assert all(
        c.kwargs["DBInstanceIdentifier"] == "shop-db"
        for c in client.download_db_log_file_portion.call_args_list
    )


def test_collect_log_file(client):
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    # Lines are cut between portions.
    client.download_db_log_file_portion.side_effect = [
        portion(LINE1 + LINE2[:30], "1:100", True),
        portion(LINE2[30:] + LINE3, "1:200", False),
    ]
    result = collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())

    assert result.error is None
    assert "error/postgresql.log" == result.log_file
    assert ["LOG", "ERROR"] == [e.log_level for e in result.events]
    assert "SELECT 1/0" == result.events[1].query
    assert 1 == len(result.samples)
    assert 12.345 == result.samples[0].runtime_ms
    assert "2 events, 1 samples>" in repr(result)


def test_collect_log_file_partial_failure(client):
    from pgrdslog.errors import RetrievalError
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    client.download_db_log_file_portion.side_effect = [
        portion(LINE1, "1:100", True),
        denied(),
    ]
    result = collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())

    assert isinstance(result.error, RetrievalError)
    assert "1:100" == result.error.marker
    assert isinstance(result.error.__cause__, ClientError)
    assert "AccessDenied" in str(result.error)
    assert "failed" in repr(result)
    assert 1 == len(result.events)
    assert 1 == len(result.samples)
    assert 2 == client.download_db_log_file_portion.call_count


def test_collect_log_file_truncated_line(client):
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    throttled = ClientError(
        {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}},
        "DownloadDBLogFilePortion",
    )
    # Duration line cut in the middle of its query.
    client.download_db_log_file_portion.side_effect = [
        portion(LINE1[:-20], "1:100", True),
        throttled,
    ]
    result = collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())

    assert result.error is not None
    assert "Throttling" in str(result.error)
    assert [] == result.events
    assert [] == result.samples


def test_collect_log_file_unterminated_last_line(client):
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    client.download_db_log_file_portion.side_effect = [
        portion(LINE2 + LINE1[:40], "1:100", True),
        portion(LINE1[40:].rstrip("\n"), "1:200", False),
    ]
    result = collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())

    assert result.error is None
    assert 2 == len(result.events)
    assert ["SELECT 1"] == [s.query for s in result.samples]


def test_collect_log_file_connection_error(client):
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    client.download_db_log_file_portion.side_effect = EndpointConnectionError(
        endpoint_url="https://rds.eu-west-1.amazonaws.com"
    )
    result = collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())

    assert "0" == result.error.marker
    assert [] == result.events
    assert [] == result.samples


def test_collect_log_file_other_error(client):
    from pgrdslog.log import LogParser
    from pgrdslog.rds import collect_log_file

    client.download_db_log_file_portion.side_effect = KeyError("LogFileData")
    with pytest.raises(KeyError):
        collect_log_file(client, "shop-db", "error/postgresql.log", LogParser())


def test_list_log_files(client):
    from pgrdslog.rds import list_log_files

    paginator = client.get_paginator.return_value
    paginator.paginate.return_value = [
        {"DescribeDBLogFiles": [{"LogFileName": "error/postgresql.log.2016-01-20-16"}]},
        {"DescribeDBLogFiles": [{"LogFileName": "error/postgresql.log.2016-01-20-17"}]},
    ]
    since = datetime(2016, 1, 20, 17, 20, tzinfo=timezone.utc)
    files = list_log_files(client, "shop-db", since)

    assert [
        "error/postgresql.log.2016-01-20-16",
        "error/postgresql.log.2016-01-20-17",
    ] == files
    client.get_paginator.assert_called_once_with("describe_db_log_files")
    paginator.paginate.assert_called_once_with(
        DBInstanceIdentifier="shop-db", FileLastWritten=1453310400000
    )


def test_collect(client):
    from pgrdslog.errors import RetrievalError
    from pgrdslog.rds import collect

    client.get_paginator.return_value.paginate.return_value = [
        {"DescribeDBLogFiles": [{"LogFileName": "a.log"}, {"LogFileName": "b.log"}]},
    ]
    stale = "2016-01-20 16:00:00 UTC:10.0.1.12(51962):app@shop:[99]:LOG:  old\n"
    responses = {
        "a.log": portion(stale + LINE1, "1:1", False),
        "b.log": denied(),
    }

    def download(LogFileName, **kw):
        response = responses[LogFileName]
        if isinstance(response, Exception):
            raise response
        return response

    client.download_db_log_file_portion.side_effect = download

    results = collect(client, "shop-db", now=NOW, max_workers=2)

    assert ["a.log", "b.log"] == [r.log_file for r in results]
    assert results[0].error is None
    assert [3287] == [e.backend_pid for e in results[0].events]
    assert 1 == len(results[0].samples)
    assert isinstance(results[1].error, RetrievalError)
    assert [] == results[1].events

    __, kwargs = client.get_paginator.return_value.paginate.call_args
    since = NOW - timedelta(minutes=10)
    assert int(since.timestamp() * 1000) == kwargs["FileLastWritten"]


def test_make_client(mocker):
    boto_client = mocker.patch("pgrdslog.rds.boto3.client", autospec=True)

    from pgrdslog.config import Settings
    from pgrdslog.rds import make_client

    client = make_client(Settings(region="eu-west-1", timeout=5))

    assert client is boto_client.return_value
    args, kwargs = boto_client.call_args
    assert ("rds",) == args
    assert "eu-west-1" == kwargs["region_name"]
    assert 5 == kwargs["config"].connect_timeout
    assert 5 == kwargs["config"].read_timeout


def test_main(mocker, capsys):
    import json
    from pgrdslog.errors import RetrievalError
    from pgrdslog.log import LogEvent, QuerySample
    from pgrdslog.rds import ParseResult

    pkg = "pgrdslog.__main__"
    mocker.patch(pkg + ".logging.basicConfig", autospec=True)
    make_client = mocker.patch(pkg + ".make_client", autospec=True)
    collect = mocker.patch(pkg + ".collect", autospec=True)

    from pgrdslog.__main__ import main

    event = LogEvent(NOW, 3287, "LOG", "duration: 1.0 ms  statement: SELECT 1")
    sample = QuerySample(NOW, "app", "shop", "SELECT 1", 1.0)
    collect.return_value = [ParseResult("a.log", [event], [sample])]

    assert 0 == main(argv=["--lookback", "5", "shop-db"], environ=dict())
    out, err = capsys.readouterr()
    objects = [json.loads(line) for line in out.splitlines()]
    assert ["event", "sample"] == [o["type"] for o in objects]

    settings = make_client.call_args[0][0]
    assert timedelta(minutes=5) == settings.lookback
    args, kwargs = collect.call_args
    assert "shop-db" == args[1]
    assert timedelta(minutes=5) == kwargs["lookback"]

    # Instance from environment, one file failed.
    error = RetrievalError("b.log", "0", Exception("denied"))
    collect.return_value = [ParseResult("b.log", [], [], error)]
    assert 1 == main(argv=[], environ=dict(RDS_INSTANCE_ID="shop-db"))
    assert "shop-db" == collect.call_args[0][1]


def test_main_ko(mocker):
    pkg = "pgrdslog.__main__"
    mocker.patch(pkg + ".logging.basicConfig", autospec=True)
    mocker.patch(pkg + ".make_client", autospec=True)
    collect = mocker.patch(pkg + ".collect", autospec=True)
    collect.side_effect = denied()

    from pgrdslog.__main__ import main

    assert 1 == main(argv=["shop-db"], environ=dict())
