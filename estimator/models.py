from datetime import datetime, timezone

from estimator import db


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Work(db.Model):
    __tablename__ = 'work'
    works_id        = db.Column(db.String(64), primary_key=True)
    name            = db.Column(db.String(300), nullable=False)
    division        = db.Column(db.String(120))
    estimate_status = db.Column(db.String(32), nullable=False, default='draft')
    created_by      = db.Column(db.String(64))
    created_at      = db.Column(db.DateTime, default=utcnow)

    subworks = db.relationship(
        'Subwork',
        backref='work',
        lazy=True,
        order_by='Subwork.sr_no',
        cascade='all, delete-orphan'
    )
    assignments = db.relationship(
        'WorkAssignment',
        backref='work',
        lazy=True,
        cascade='all, delete-orphan'
    )

    @property
    def total_amount(self):
        return sum(s.total_amount for s in self.subworks)


class Subwork(db.Model):
    __tablename__ = 'subwork'
    id       = db.Column(db.Integer, primary_key=True)
    works_id = db.Column(db.String(64), db.ForeignKey('work.works_id'), nullable=False)
    sr_no    = db.Column(db.Integer, nullable=False, default=1)
    name     = db.Column(db.String(300), nullable=False)

    items = db.relationship(
        'LineItem',
        backref='subwork',
        lazy=True,
        order_by='LineItem.id',
        cascade='all, delete-orphan'
    )

    @property
    def total_amount(self):
        return sum(i.total_amount or 0.0 for i in self.items)


class LineItem(db.Model):
    """One estimate item inside a sub-work.

    ``final_quantity`` and ``total_amount`` are derived fields written only by
    the item recompute; they are never taken from user input.
    """
    __tablename__ = 'line_item'
    id                     = db.Column(db.Integer, primary_key=True)
    subwork_id             = db.Column(db.Integer, db.ForeignKey('subwork.id'), nullable=False)
    item_number            = db.Column(db.String(16), nullable=False)
    description            = db.Column(db.Text, nullable=False)
    category               = db.Column(db.String(64), default='')   # '', 'royalty', 'testing', ...
    unit                   = db.Column(db.String(32), default='')
    default_rate           = db.Column(db.Float, default=0.0)
    catalog_reference      = db.Column(db.String(120))
    operation_type         = db.Column(db.String(16), nullable=False, default='none')
    operation_value        = db.Column(db.Float, default=0.0)
    unit_conversion_factor = db.Column(db.Float, default=1.0)
    final_unit             = db.Column(db.String(32))
    final_quantity         = db.Column(db.Float, default=0.0)
    total_amount           = db.Column(db.Float, default=0.0)

    rates = db.relationship(
        'ItemRate',
        backref='item',
        lazy=True,
        order_by='ItemRate.id',
        cascade='all, delete-orphan'
    )
    measurements = db.relationship(
        'MeasurementRow',
        backref='item',
        lazy=True,
        order_by='MeasurementRow.sr_no',
        cascade='all, delete-orphan'
    )
    analyses = db.relationship(
        'RateAnalysis',
        backref='item',
        lazy=True,
        cascade='all, delete-orphan'
    )
    royalty = db.relationship(
        'RoyaltyMeasurement',
        backref='item',
        uselist=False,
        cascade='all, delete-orphan'
    )
    testing = db.relationship(
        'TestingMeasurement',
        backref='item',
        uselist=False,
        cascade='all, delete-orphan'
    )


class ItemRate(db.Model):
    __tablename__ = 'item_rate'
    id           = db.Column(db.Integer, primary_key=True)
    item_id      = db.Column(db.Integer, db.ForeignKey('line_item.id'), nullable=False)
    description  = db.Column(db.Text, nullable=False)
    rate         = db.Column(db.Float, nullable=False, default=0.0)
    unit         = db.Column(db.String(32), default='')
    quantity     = db.Column(db.Float, default=0.0)
    total_amount = db.Column(db.Float, default=0.0)


class MeasurementRow(db.Model):
    __tablename__ = 'measurement_row'
    __table_args__ = (db.UniqueConstraint('item_id', 'sr_no'),)
    id                  = db.Column(db.Integer, primary_key=True)
    item_id             = db.Column(db.Integer, db.ForeignKey('line_item.id'), nullable=False)
    sr_no               = db.Column(db.Integer, nullable=False)
    description         = db.Column(db.Text)
    unit                = db.Column(db.String(32))
    factor              = db.Column(db.Float, default=1.0)
    no_of_units         = db.Column(db.Float, default=0.0)
    length              = db.Column(db.Float, default=0.0)
    width               = db.Column(db.Float, default=0.0)
    height              = db.Column(db.Float, default=0.0)
    is_manual_quantity  = db.Column(db.Boolean, default=False)
    manual_quantity     = db.Column(db.Float)
    is_deduction        = db.Column(db.Boolean, default=False)
    rate_id             = db.Column(db.Integer, db.ForeignKey('item_rate.id', ondelete='SET NULL'))
    rate                = db.Column(db.Float, default=0.0)
    calculated_quantity = db.Column(db.Float, default=0.0)
    line_amount         = db.Column(db.Float, default=0.0)
    reference_item_id   = db.Column(db.Integer)
    created_by          = db.Column(db.String(64))


class RateAnalysis(db.Model):
    __tablename__ = 'rate_analysis'
    __table_args__ = (db.UniqueConstraint('item_id', 'rate_id'),)
    id                = db.Column(db.Integer, primary_key=True)
    item_id           = db.Column(db.Integer, db.ForeignKey('line_item.id'), nullable=False)
    rate_id           = db.Column(db.Integer, db.ForeignKey('item_rate.id', ondelete='CASCADE'))
    base_rate         = db.Column(db.Float)
    entries           = db.Column(db.JSON, nullable=False, default=list)
    final_tax_percent = db.Column(db.Float)
    final_tax_amount  = db.Column(db.Float)
    total_additions   = db.Column(db.Float, default=0.0)
    total_deletions   = db.Column(db.Float, default=0.0)
    total_taxes       = db.Column(db.Float, default=0.0)
    calculated_rate   = db.Column(db.Float, default=0.0)
    final_rate        = db.Column(db.Float, default=0.0)
    total_rate        = db.Column(db.Float, default=0.0)
    created_by        = db.Column(db.String(64))
    updated_at        = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class RoyaltyMeasurement(db.Model):
    """Material quantities a royalty item is charged on.

    ``hb_metal``, ``murum`` and ``sand`` are ``measurement`` times the
    matching factor; they are rewritten on every save.
    """
    __tablename__ = 'royalty_measurement'
    id           = db.Column(db.Integer, primary_key=True)
    item_id      = db.Column(db.Integer, db.ForeignKey('line_item.id'), nullable=False, unique=True)
    measurement  = db.Column(db.Float, nullable=False, default=0.0)
    metal_factor = db.Column(db.Float, nullable=False, default=0.0)
    hb_metal     = db.Column(db.Float, nullable=False, default=0.0)
    murum_factor = db.Column(db.Float, nullable=False, default=0.0)
    murum        = db.Column(db.Float, nullable=False, default=0.0)
    sand_factor  = db.Column(db.Float, nullable=False, default=0.0)
    sand         = db.Column(db.Float, nullable=False, default=0.0)
    created_by   = db.Column(db.String(64))
    updated_at   = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class TestingMeasurement(db.Model):
    __tablename__ = 'testing_measurement'
    id             = db.Column(db.Integer, primary_key=True)
    item_id        = db.Column(db.Integer, db.ForeignKey('line_item.id'), nullable=False, unique=True)
    quantity       = db.Column(db.Float, nullable=False, default=0.0)
    description    = db.Column(db.Text, default='')
    required_tests = db.Column(db.Integer, nullable=False, default=0)
    total          = db.Column(db.Float, nullable=False, default=0.0)
    created_by     = db.Column(db.String(64))
    updated_at     = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class WorkAssignment(db.Model):
    __tablename__ = 'work_assignment'
    __table_args__ = (db.UniqueConstraint('works_id', 'level'),)
    id          = db.Column(db.Integer, primary_key=True)
    works_id    = db.Column(db.String(64), db.ForeignKey('work.works_id'), nullable=False)
    level       = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.String(64), nullable=False)


class ApprovalWorkflow(db.Model):
    """Single mutable row per estimate.

    ``version`` is the mapper's version counter: every flushed UPDATE bumps
    it and matches on the value that was loaded.
    """
    __tablename__ = 'approval_workflow'
    id                  = db.Column(db.Integer, primary_key=True)
    works_id            = db.Column(db.String(64), db.ForeignKey('work.works_id'),
                                    nullable=False, unique=True)
    current_level       = db.Column(db.Integer, nullable=False, default=1)
    current_approver_id = db.Column(db.String(64))
    status              = db.Column(db.String(32), nullable=False, default='pending_approval')
    initiated_by        = db.Column(db.String(64), nullable=False)
    initiated_at        = db.Column(db.DateTime, default=utcnow)
    version             = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    work = db.relationship('Work', backref=db.backref('workflow', uselist=False,
                                                      cascade='all, delete-orphan'))
    history = db.relationship(
        'ApprovalHistory',
        backref='workflow',
        lazy=True,
        order_by='ApprovalHistory.id',
        cascade='all, delete-orphan'
    )


class ApprovalHistory(db.Model):
    __tablename__ = 'approval_history'
    id          = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(db.Integer, db.ForeignKey('approval_workflow.id'), nullable=False)
    level       = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.String(64), nullable=False)
    action      = db.Column(db.String(32), nullable=False)
    comments    = db.Column(db.Text)
    created_at  = db.Column(db.DateTime, default=utcnow)
