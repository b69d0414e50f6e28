import sys

from sqlalchemy.orm import sessionmaker

import generate_work_orders


def test_run_once_generates_due_orders(engine, monkeypatch, make_routine):
    make_routine()
    monkeypatch.setattr(generate_work_orders, "SessionLocal", sessionmaker(bind=engine))
    assert generate_work_orders.run_once() == 1
    assert generate_work_orders.run_once() == 0


def test_main_prints_count(engine, monkeypatch, capsys):
    monkeypatch.setattr(generate_work_orders, "SessionLocal", sessionmaker(bind=engine))
    monkeypatch.setattr(sys, "argv", ["generate_work_orders", "--seed"])
    generate_work_orders.main()
    assert "Generated 0 work order(s)" in capsys.readouterr().out
